from .shared import FilterCriteria, IndexerAggregator, SearchCriteria, TorrentRanker
from .strategies import ContentStrategy, get_strategy

__all__ = [
    "ContentStrategy",
    "FilterCriteria",
    "IndexerAggregator",
    "SearchCriteria",
    "TorrentRanker",
    "get_strategy",
]
