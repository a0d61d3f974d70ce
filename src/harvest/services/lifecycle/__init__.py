from .cancellation import CancellationNotifier, EngineCancellationNotifier
from .orchestrator import LifecycleOrchestrator

__all__ = ["CancellationNotifier", "EngineCancellationNotifier", "LifecycleOrchestrator"]
