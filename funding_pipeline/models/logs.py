"""
Reward log and worker heartbeat models.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import String, Integer, BigInteger, Numeric, DateTime, Text, Index, JSON
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, enum_column, utcnow
from .enums import RewardAction, WorkerState


class RewardLog(BaseModel):
    """Audit row for every payout attempt."""

    __tablename__ = "reward_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    funding_id: Mapped[str] = mapped_column(String(36))
    queue_id: Mapped[Optional[int]] = mapped_column(Integer)

    action: Mapped[RewardAction] = mapped_column(enum_column(RewardAction))

    tx_hash: Mapped[Optional[str]] = mapped_column(String(128))
    reward_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(38, 18))
    usd_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 2))
    gas_used: Mapped[Optional[int]] = mapped_column(BigInteger)
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index("idx_reward_logs_funding", "funding_id"),
        Index("idx_reward_logs_created", "created_at"),
    )


class WorkerHeartbeat(BaseModel, TimestampMixin):
    """Latest heartbeat of a named worker."""

    __tablename__ = "worker_health"

    worker_name: Mapped[str] = mapped_column(String(64), primary_key=True)

    status: Mapped[WorkerState] = mapped_column(enum_column(WorkerState))

    last_heartbeat: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    processed_count: Mapped[int] = mapped_column(Integer, default=0)
    error_count: Mapped[int] = mapped_column(Integer, default=0)

    extra: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        "metadata",
        JSON,
        comment="Worker-specific details of the last cycle"
    )

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
