"""
Database models for the funding pipeline.
"""

from .base import BaseModel, TimestampMixin, utcnow
from .enums import (
    Chain, FundingStatus, RewardQueueStatus, RewardAction, WorkerState,
    ALLOWED_TRANSITIONS
)
from .funding import FundingRecord
from .address_pool import AddressPoolEntry
from .reward_queue import RewardQueueEntry
from .logs import RewardLog, WorkerHeartbeat

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "utcnow",
    "Chain",
    "FundingStatus",
    "RewardQueueStatus",
    "RewardAction",
    "WorkerState",
    "ALLOWED_TRANSITIONS",
    "FundingRecord",
    "AddressPoolEntry",
    "RewardQueueEntry",
    "RewardLog",
    "WorkerHeartbeat",
]
