"""Logging utils"""

import os
import sys
from datetime import datetime

from loguru import logger

from harvest.settings.manager import settings_manager
from harvest.utils import data_dir_path

LAST_LOGS_CLEANED: datetime | None = None

LOG_FORMAT = (
    "<fg #818589>{time:YY-MM-DD} {time:HH:mm:ss}</fg #818589> | "
    "<level>{level.icon}</level> <level>{level: <9}</level> | "
    "<fg #e7e7e7>{module}</fg #e7e7e7>.<fg #e7e7e7>{function}</fg #e7e7e7> - <level>{message}</level>"
)

# name: (severity, colour, icon); builtin levels keep loguru's severity
LOG_LEVELS: dict[str, tuple[int | None, str, str]] = {
    "TRACE": (None, "27F5E7", "✏️ "),
    "DEBUG": (None, "98C1D9", "🐞"),
    "INFO": (None, "818589", "📰"),
    "SUCCESS": (None, "00ff00", "✔️ "),
    "WARNING": (None, "ffcc00", "⚠️ "),
    "CRITICAL": (None, "ff0000", ""),
    "PROGRAM": (20, "cc6600", "🤖"),
    "DATABASE": (5, "d834eb", "🛢️"),
    "ENGINE": (5, "9B59B6", "⚙️"),
    "REQUEST": (20, "92a1cf", "🗃️ "),
    "SEARCH": (20, "3D5A80", "🔍"),
    "DOWNLOAD": (20, "cc3333", "🧲"),
    "COMPLETED": (20, "FFFFFF", "🟢"),
    "NOT_FOUND": (20, "818589", "🤷‍"),
    "ORGANIZE": (20, "FFFFE0", "🗂️ "),
}


def _register_level(name: str, no: int | None, color: str, icon: str) -> None:
    color = f"<fg #{os.getenv(f'HARVEST_LOGGER_{name}_FG', color)}>"
    icon = os.getenv(f"HARVEST_LOGGER_{name}_ICON", icon)
    try:
        logger.level(name)
    except ValueError:
        # unknown so far, severity can only be given once
        logger.level(name, no=no, color=color, icon=icon)
        return
    logger.level(name, color=color, icon=icon)


def _file_handler(level: str) -> dict:
    log_settings = settings_manager.settings.logging
    logs_dir_path = data_dir_path / "logs"
    os.makedirs(logs_dir_path, exist_ok=True)
    return {
        "sink": logs_dir_path / f"harvest-{datetime.now():%Y%m%d-%H%M}.log",
        "level": level,
        "format": LOG_FORMAT,
        "rotation": f"{log_settings.rotation_mb} MB" if log_settings.rotation_mb > 0 else None,
        "retention": f"{log_settings.retention_hours} hours",
        "compression": None if log_settings.compression == "disabled" else log_settings.compression,
        "backtrace": False,
        "diagnose": True,
        "enqueue": True,
    }


def setup_logger(level):
    """Register the custom levels and (re)configure the sinks. Safe to call repeatedly."""
    for name, (no, color, icon) in LOG_LEVELS.items():
        _register_level(name, no, color, icon)

    level = (level or "INFO").upper()
    handlers = [
        {
            "sink": sys.stderr,
            "level": level,
            "format": LOG_FORMAT,
            "backtrace": False,
            "diagnose": False,
            "enqueue": True,
        }
    ]
    if settings_manager.settings.logging.enabled:
        handlers.append(_file_handler(level))

    logger.configure(handlers=handlers)


def _log_files():
    return sorted(
        (data_dir_path / "logs").glob("harvest-*.log*"), key=lambda f: f.stat().st_mtime
    )


def log_cleaner():
    """Remove log files past the retention window, at most once an hour. The newest file is kept."""
    global LAST_LOGS_CLEANED

    log_settings = settings_manager.settings.logging
    now = datetime.now()
    if not log_settings.enabled:
        return
    if LAST_LOGS_CLEANED and (now - LAST_LOGS_CLEANED).total_seconds() < 3600:
        return

    retention_hours = max(0, int(log_settings.retention_hours))
    removed = 0
    try:
        for log_file in _log_files()[:-1]:
            age = now - datetime.fromtimestamp(log_file.stat().st_mtime)
            if age.total_seconds() > retention_hours * 3600:
                log_file.unlink()
                removed += 1
    except OSError as e:
        logger.error(f"Failed to clean old logs: {e}")
        return

    if removed:
        LAST_LOGS_CLEANED = now
        logger.debug(f"Removed {removed} log files older than {retention_hours} hours")


def clean_all_logs():
    """Remove every log file, used by the --clean_logs flag."""
    for log_file in _log_files():
        try:
            log_file.unlink()
        except OSError as e:
            logger.debug(f"Could not remove {log_file}: {e}")
    logger.log("PROGRAM", "Log files cleaned")


setup_logger(settings_manager.settings.log_level)
