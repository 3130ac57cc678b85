"""
Enumerations shared by models, services and the API.
"""

from enum import Enum
from typing import Dict, FrozenSet


class Chain(str, Enum):
    """Supported deposit chains."""

    BTC = "BTC"
    ETH = "ETH"
    SOL = "SOL"

    @classmethod
    def parse(cls, value: str) -> "Chain":
        """Parse a chain identifier case-insensitively. Raises ValueError if unknown."""
        return cls(str(value).strip().upper())


class FundingStatus(str, Enum):
    """Funding record lifecycle status."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    REWARD_SENT = "reward_sent"
    EXPIRED = "expired"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (FundingStatus.REWARD_SENT, FundingStatus.EXPIRED, FundingStatus.FAILED)

    def can_transition_to(self, target: "FundingStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: Dict[FundingStatus, FrozenSet[FundingStatus]] = {
    FundingStatus.PENDING: frozenset({FundingStatus.CONFIRMED, FundingStatus.EXPIRED}),
    FundingStatus.CONFIRMED: frozenset({FundingStatus.REWARD_SENT, FundingStatus.FAILED}),
    FundingStatus.REWARD_SENT: frozenset(),
    FundingStatus.EXPIRED: frozenset(),
    FundingStatus.FAILED: frozenset(),
}


class RewardQueueStatus(str, Enum):
    """Reward queue entry status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RewardAction(str, Enum):
    """Outcome recorded in the reward log."""

    SUBMITTED = "submitted"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkerState(str, Enum):
    """Worker heartbeat state."""

    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"
