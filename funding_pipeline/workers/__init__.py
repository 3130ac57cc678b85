"""
Background polling workers.
"""

from .base import PollingWorker
from .chain_monitor_worker import ChainMonitorWorker
from .reward_processor import RewardProcessorWorker
from .cleanup_worker import CleanupWorker
from .manager import WorkerManager

__all__ = [
    "PollingWorker",
    "ChainMonitorWorker",
    "RewardProcessorWorker",
    "CleanupWorker",
    "WorkerManager",
]
