from .aggregator import DownloadAggregator
from .shared import DownloadEngine

__all__ = ["DownloadAggregator", "DownloadEngine"]
