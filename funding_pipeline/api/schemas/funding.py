"""
Schemas for the public deposit endpoints.
"""

from typing import Optional

from pydantic import AliasChoices, Field

from funding_pipeline.models import FundingRecord
from funding_pipeline.services.deposit_service import DepositService, DepositStatus
from .common import CamelModel, UTCDateTime, decimal_str


class DepositRequest(CamelModel):
    """Body of POST /request-deposit."""
    user_address: str = Field(
        validation_alias=AliasChoices("userAddress", "evmAddress", "user_address"),
        min_length=1,
        max_length=128,
        description="EVM address that receives the reward"
    )
    chain: str = Field(min_length=1, max_length=16, description="BTC, ETH or SOL")


class DepositResponse(CamelModel):
    deposit_id: str
    deposit_address: str
    qr_data: str
    expires_at: UTCDateTime
    chain: str
    min_confirmations: int

    @classmethod
    def from_record(cls, record: FundingRecord) -> "DepositResponse":
        return cls(
            deposit_id=record.id,
            deposit_address=record.deposit_address,
            qr_data=DepositService.qr_data(record.chain, record.deposit_address),
            expires_at=record.expires_at,
            chain=record.chain.value,
            min_confirmations=record.min_confirmations,
        )


class DepositStatusResponse(CamelModel):
    deposit_id: str
    status: str
    chain: str
    deposit_address: str
    confirmations: int
    min_confirmations: int
    funded_amount: Optional[str] = None
    funding_tx_hash: Optional[str] = None
    reward_tx_hash: Optional[str] = None
    reward_amount: Optional[str] = None
    explorer_url: Optional[str] = None
    expires_at: UTCDateTime

    @classmethod
    def from_status(cls, status: DepositStatus) -> "DepositStatusResponse":
        record = status.record
        return cls(
            deposit_id=record.id,
            status=record.status.value,
            chain=record.chain.value,
            deposit_address=record.deposit_address,
            confirmations=record.confirmations or 0,
            min_confirmations=record.min_confirmations,
            funded_amount=decimal_str(record.funded_amount),
            funding_tx_hash=record.funding_tx_hash,
            reward_tx_hash=record.reward_tx_hash,
            reward_amount=decimal_str(record.reward_amount),
            explorer_url=status.explorer_url,
            expires_at=record.expires_at,
        )
