"""
Funding record model - one deposit request and its lifecycle.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Integer, Numeric, DateTime, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, enum_column
from .enums import Chain, FundingStatus


def generate_funding_id() -> str:
    return str(uuid.uuid4())


class FundingRecord(BaseModel, TimestampMixin):
    """A deposit request awaiting, or past, on-chain confirmation."""

    __tablename__ = "funding_records"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_funding_id
    )

    requester_address: Mapped[str] = mapped_column(
        String(128),
        comment="Address the reward is paid to"
    )

    chain: Mapped[Chain] = mapped_column(
        enum_column(Chain),
        comment="Deposit chain"
    )

    deposit_address: Mapped[str] = mapped_column(
        String(128),
        comment="Pool-assigned receiving address"
    )

    requested_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(38, 18),
        comment="Requested amount in native units"
    )

    status: Mapped[FundingStatus] = mapped_column(
        enum_column(FundingStatus),
        default=FundingStatus.PENDING,
        comment="Lifecycle status"
    )

    funded_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(38, 18),
        comment="Amount received, set on confirmation"
    )

    funding_tx_hash: Mapped[Optional[str]] = mapped_column(
        String(128),
        comment="Inbound transaction hash"
    )

    reward_tx_hash: Mapped[Optional[str]] = mapped_column(
        String(128),
        comment="Reward transfer transaction hash"
    )

    reward_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(38, 18),
        comment="Reward tokens sent"
    )

    confirmations: Mapped[int] = mapped_column(
        Integer,
        default=0,
        comment="Last observed confirmation depth"
    )

    min_confirmations: Mapped[int] = mapped_column(
        Integer,
        comment="Confirmations required for this chain"
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime,
        comment="Deposit window end (UTC)"
    )

    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        comment="Last reward failure, if any"
    )

    __table_args__ = (
        Index("idx_funding_status_created", "status", "created_at"),
        Index("idx_funding_status_expires", "status", "expires_at"),
        Index("idx_funding_deposit_address", "deposit_address"),
        Index("idx_funding_requester", "requester_address"),
    )

    def __repr__(self) -> str:
        return f"<FundingRecord(id={self.id}, chain={self.chain.value}, status={self.status.value})>"

    def is_expired(self, now: datetime) -> bool:
        return self.status == FundingStatus.PENDING and now > self.expires_at
