from sqlalchemy import MetaData, orm


class Base(orm.DeclarativeBase):
    """Base class for all database models"""

    pass


def get_base_metadata() -> MetaData:
    """Get the Base metadata with every model registered"""

    from harvest.media import (  # noqa: F401
        Episode,
        MediaRequest,
        SearchLog,
        Season,
        TorrentDownload,
    )

    return Base.metadata
