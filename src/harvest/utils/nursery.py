from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import trio
from kink import di


@dataclass
class Nursery:
    """Program wide nursery for fire-and-forget background tasks"""

    nursery: trio.Nursery


async def run_in_background(
    func: Callable[..., Awaitable[Any]],
    *args: Any,
) -> None:
    """Start `func` in the program nursery, or await it inline when none is running."""

    if Nursery in di:
        di[Nursery].nursery.start_soon(func, *args)
    else:
        await func(*args)
