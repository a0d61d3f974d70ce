import os
import re
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path
from time import time

from loguru import logger

root_dir = Path(__file__).resolve().parents[3]

data_dir_path = Path(os.getenv("HARVEST_DATA_DIR", root_dir / "data"))


def get_version() -> str:
    pyproject = root_dir / "pyproject.toml"
    if pyproject.exists():
        match = re.search(r'version = "(.+)"', pyproject.read_text())
        if match:
            return match.group(1)

    try:
        return package_version("harvestarr")
    except PackageNotFoundError:
        raise ValueError("Could not find version in pyproject.toml")


def sanitize_filename(name: str) -> str:
    """Replace characters that are invalid in file names with underscores."""
    return re.sub(r'[<>:"/\\|?*]', "_", name).strip()


@contextmanager
def benchmark(
    *,
    log: Callable[[float], None] | None,
    decimal_places: int = 3,
) -> Iterator[None]:
    """Context manager for benchmarking code execution time."""

    start_time = time()

    try:
        yield
    finally:
        elapsed = time() - start_time

        if log:
            log(round(elapsed, decimal_places))
        else:
            logger.debug(f"Execution time: {elapsed:.{decimal_places}f} seconds")
