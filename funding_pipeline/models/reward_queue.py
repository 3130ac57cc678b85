"""
Reward queue model - confirmed fundings awaiting token payout.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Integer, Numeric, DateTime, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, enum_column
from .enums import Chain, RewardQueueStatus


class RewardQueueEntry(BaseModel, TimestampMixin):
    """One payout job. At most one per funding."""

    __tablename__ = "reward_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    funding_id: Mapped[str] = mapped_column(String(36), unique=True)

    requester_address: Mapped[str] = mapped_column(String(128))

    funded_amount: Mapped[Decimal] = mapped_column(Numeric(38, 18))

    chain: Mapped[Chain] = mapped_column(enum_column(Chain))

    priority: Mapped[int] = mapped_column(Integer, default=0)

    status: Mapped[RewardQueueStatus] = mapped_column(
        enum_column(RewardQueueStatus),
        default=RewardQueueStatus.PENDING
    )

    retry_count: Mapped[int] = mapped_column(Integer, default=0)

    error_message: Mapped[Optional[str]] = mapped_column(Text)

    reward_tx_hash: Mapped[Optional[str]] = mapped_column(String(128))

    reward_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(38, 18))

    # Signed transfer recorded before broadcast; cleared only once it can no longer be mined
    submitted_tx_hash: Mapped[Optional[str]] = mapped_column(String(128))
    submitted_nonce: Mapped[Optional[int]] = mapped_column(Integer)
    submitted_raw_tx: Mapped[Optional[str]] = mapped_column(Text)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    processing_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_reward_queue_next", "status", "priority", "created_at"),
        Index("idx_reward_queue_failed", "status", "retry_count"),
    )

    def __repr__(self) -> str:
        return f"<RewardQueueEntry(id={self.id}, funding_id={self.funding_id}, status={self.status.value})>"
