import argparse

from harvest.db.db import reset_database
from harvest.settings import settings_manager
from harvest.utils.logging import clean_all_logs, logger, setup_logger


def handle_args():
    """
    Parse CLI arguments and perform immediate actions for certain flags.

    --hard_reset_db and --clean_logs run their operation and exit. --debug and
    --log_level override the configured log level for this run.

    Returns:
        argparse.Namespace: The parsed command-line arguments.
    """
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging.",
    )
    parser.add_argument(
        "--log_level",
        type=str.upper,
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level for this run.",
    )
    parser.add_argument(
        "--hard_reset_db",
        action="store_true",
        help="Hard reset the database.",
    )
    parser.add_argument(
        "--clean_logs",
        action="store_true",
        help="Clean old logs.",
    )
    parser.add_argument(
        "--search-now",
        dest="search_now",
        action="store_true",
        help="Search every pending, failed and expired request on startup.",
    )

    args = parser.parse_args()

    if args.debug or args.log_level:
        setup_logger("DEBUG" if args.debug else args.log_level)

    if args.hard_reset_db:
        success = reset_database()
        logger.info("Hard reset the database")
        exit(0 if success else 1)

    if args.clean_logs:
        clean_all_logs()
        logger.info("Cleaned old logs.")
        exit(0)

    return args
