from .guard import SingleFlight
from .progress_tracker import ProgressTracker
from .scheduler import ProgramScheduler
from .search_scheduler import SearchScheduler

__all__ = ["SingleFlight", "ProgressTracker", "ProgramScheduler", "SearchScheduler"]
