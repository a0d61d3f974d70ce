from collections.abc import Iterator
from contextlib import contextmanager

from loguru import logger


class SingleFlight:
    """
    Re-entrancy guard owned by one periodic component.

    A run that starts while another is in flight is skipped, not queued.
    Everything runs on one trio thread, so a plain flag is enough.
    """

    def __init__(self, name: str):
        self.name = name
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @contextmanager
    def acquire(self) -> Iterator[bool]:
        if self._running:
            logger.debug(f"{self.name} is already running, skipping this run")
            yield False
            return

        self._running = True
        try:
            yield True
        finally:
            self._running = False
