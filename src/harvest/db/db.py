from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from loguru import logger
from sqla_wrapper import Session, SQLAlchemy
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from harvest.settings.manager import settings_manager


def _engine_options(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        return {"echo": False, "connect_args": {"check_same_thread": False}}

    return {
        "pool_size": 25,
        "max_overflow": 25,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "echo": False,
    }


db_host = str(settings_manager.settings.database.host)
db = SQLAlchemy(
    db_host,
    engine_options=_engine_options(db_host),
    session_options={"expire_on_commit": False},
)


@contextmanager
def db_session() -> Generator[Session, Any, None]:
    with db.Session() as session:
        s: Session = session

        yield s


def create_database() -> bool:
    """Create any missing tables."""
    from harvest.db.base_model import get_base_metadata

    try:
        get_base_metadata().create_all(db.engine)
        logger.log("DATABASE", "Database schema is up to date")
        return True
    except SQLAlchemyError as e:
        logger.error(f"Failed to create database schema: {e}")
        return False


def reset_database() -> bool:
    """Drop and recreate every table. All data will be lost."""
    from harvest.db.base_model import get_base_metadata

    logger.warning("Resetting database - all data will be lost!")
    try:
        metadata = get_base_metadata()
        metadata.drop_all(db.engine)
        metadata.create_all(db.engine)
        logger.success("Database reset complete")
        return True
    except SQLAlchemyError as e:
        logger.error(f"Failed to reset database: {e}")
        return False


def validate_database() -> bool:
    """Validate that the database is accessible."""
    try:
        with db_session() as session:
            session.execute(text("SELECT 1"))
            return True
    except SQLAlchemyError:
        logger.error("Database connection failed. Is the database running?")
        return False
