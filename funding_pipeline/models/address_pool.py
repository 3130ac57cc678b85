"""
Address pool model - pre-generated deposit addresses.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Boolean, DateTime, Text, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, enum_column
from .enums import Chain


class AddressPoolEntry(BaseModel, TimestampMixin):
    """A generated receiving address, free or assigned to one funding."""

    __tablename__ = "address_pool"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    chain: Mapped[Chain] = mapped_column(enum_column(Chain))

    address: Mapped[str] = mapped_column(String(128), unique=True)

    encrypted_private_key: Mapped[Optional[str]] = mapped_column(
        Text,
        comment="Fernet token; null when custody stays with the node or xpub"
    )

    derivation_index: Mapped[int] = mapped_column(Integer)

    is_used: Mapped[bool] = mapped_column(Boolean, default=False)

    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        UniqueConstraint("chain", "derivation_index", name="uq_address_pool_chain_index"),
        Index("idx_address_pool_unused", "chain", "is_used", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AddressPoolEntry(chain={self.chain.value}, address={self.address}, used={self.is_used})>"
