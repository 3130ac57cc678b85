"""
Reward service - prices a funding in USD and pays reward tokens.

The reward is ``usd_value * REWARD_MULTIPLIER`` tokens, rounded down to the
token's decimals. Fundings worth less than MIN_FUNDING_AMOUNT_USD are
rejected before any transfer is attempted.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from web3 import Web3

from funding_pipeline.core.config import Settings
from funding_pipeline.core.exceptions import (
    BelowMinimumFundingError,
    InsufficientTreasuryBalanceError,
    InvalidAddressError,
    RewardTransferPendingError,
    RewardTransferRevertedError,
)
from funding_pipeline.models.enums import Chain
from funding_pipeline.utils.validation import EvmValidator
from .price_feed import PriceFeedService
from .treasury import Erc20Treasury, SignedTransfer


logger = structlog.get_logger(__name__)


@dataclass
class RewardCalculation:
    usd_value: Decimal
    reward_amount: Decimal
    reward_tokens_raw: int
    price_usd: Decimal


@dataclass
class PreparedReward:
    transfer: SignedTransfer
    recipient: str
    reward_amount: Decimal
    usd_value: Decimal


@dataclass
class RewardTransferResult:
    tx_hash: str
    block_number: int
    gas_used: int
    reward_amount: Optional[Decimal]
    usd_value: Optional[Decimal]


class SubmissionState(str, Enum):
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    DROPPED = "dropped"
    PENDING = "pending"


@dataclass
class SubmissionCheck:
    state: SubmissionState
    tx_hash: str
    block_number: Optional[int] = None
    gas_used: Optional[int] = None


class RewardService:
    """Reward calculation and token transfer."""

    def __init__(self, settings: Settings, price_feed: PriceFeedService, treasury: Erc20Treasury):
        self.settings = settings
        self.price_feed = price_feed
        self.treasury = treasury
        self.decimals = settings.reward_token_decimals
        self.logger = logger.bind(service="reward_service")

    def _to_raw(self, amount: Decimal) -> int:
        return int((amount * (Decimal(10) ** self.decimals)).to_integral_value(rounding=ROUND_DOWN))

    def _from_raw(self, raw: int) -> Decimal:
        return Decimal(raw) / (Decimal(10) ** self.decimals)

    async def calculate_reward_amount(self, funded_amount: Decimal, chain: Chain) -> RewardCalculation:
        """
        Convert a native-unit funding to USD and reward tokens.

        Raises:
            BelowMinimumFundingError: usd value under the configured minimum
        """
        funded_amount = Decimal(str(funded_amount))
        price = await self.price_feed.get_price_usd(chain)
        usd_value = funded_amount * price

        minimum = self.settings.min_funding_amount_usd
        if usd_value < minimum:
            raise BelowMinimumFundingError(usd_value, minimum)

        raw = self._to_raw(usd_value * self.settings.reward_multiplier)
        return RewardCalculation(
            usd_value=usd_value,
            reward_amount=self._from_raw(raw),
            reward_tokens_raw=raw,
            price_usd=price,
        )

    async def prepare_reward_transfer(
        self,
        to_address: str,
        funded_amount: Decimal,
        chain: Chain,
        funding_id: Optional[str] = None
    ) -> PreparedReward:
        """
        Validate, price and sign the reward transfer for a funding.

        Nothing is broadcast. Raises before signing unless the treasury holds
        the full reward.
        """
        if not EvmValidator.is_valid_address(to_address):
            raise InvalidAddressError(to_address, "reward recipient")
        recipient = Web3.to_checksum_address(to_address)

        calculation = await self.calculate_reward_amount(funded_amount, chain)

        balance_raw = await self.treasury.get_balance_raw()
        if balance_raw < calculation.reward_tokens_raw:
            self.logger.error(
                "Insufficient treasury balance",
                funding_id=funding_id,
                required=str(calculation.reward_amount),
                available=str(self._from_raw(balance_raw))
            )
            raise InsufficientTreasuryBalanceError(calculation.reward_amount, self._from_raw(balance_raw))

        gas_estimate = await self.treasury.estimate_transfer_gas(recipient, calculation.reward_tokens_raw)
        gas_limit = gas_estimate * (100 + self.settings.reward_gas_buffer_percent) // 100

        signed = await self.treasury.sign_transfer(recipient, calculation.reward_tokens_raw, gas_limit)
        return PreparedReward(
            transfer=signed,
            recipient=recipient,
            reward_amount=calculation.reward_amount,
            usd_value=calculation.usd_value,
        )

    async def send_reward_tokens(
        self,
        to_address: str,
        funded_amount: Decimal,
        chain: Chain,
        funding_id: Optional[str] = None,
        on_signed: Optional[Callable[[PreparedReward], Awaitable[None]]] = None
    ) -> RewardTransferResult:
        """
        Pay the reward for a funding and wait for the transfer to confirm.

        ``on_signed`` runs after signing and before broadcast, so a caller can
        persist the transaction hash first. Once broadcast, a missing receipt
        raises RewardTransferPendingError and a revert raises
        RewardTransferRevertedError.
        """
        prepared = await self.prepare_reward_transfer(to_address, funded_amount, chain, funding_id)
        if on_signed is not None:
            await on_signed(prepared)

        tx_hash = prepared.transfer.tx_hash
        await self.treasury.broadcast(prepared.transfer.raw_transaction)

        receipt = await self.treasury.wait_for_receipt(tx_hash)
        if receipt is None:
            raise RewardTransferPendingError(tx_hash)
        if receipt["status"] != 1:
            raise RewardTransferRevertedError(tx_hash)

        self.logger.info(
            "Reward tokens sent",
            funding_id=funding_id,
            to=prepared.recipient,
            reward_amount=str(prepared.reward_amount),
            usd_value=str(prepared.usd_value),
            tx_hash=tx_hash,
            gas_used=int(receipt["gasUsed"])
        )

        return RewardTransferResult(
            tx_hash=tx_hash,
            block_number=int(receipt["blockNumber"]),
            gas_used=int(receipt["gasUsed"]),
            reward_amount=prepared.reward_amount,
            usd_value=prepared.usd_value,
        )

    async def check_submitted_transfer(
        self,
        tx_hash: str,
        nonce: int,
        raw_transaction: Optional[str] = None
    ) -> SubmissionCheck:
        """
        Settle what happened to an earlier broadcast.

        A transfer without a receipt is dropped only once the treasury nonce
        has moved past it; until then it can still be mined. If the node no
        longer knows it, the same signed bytes are sent again.
        """
        # Nonce must be read before the receipt
        confirmed_nonce = await self.treasury.get_confirmed_nonce()
        receipt = await self.treasury.get_receipt(tx_hash)

        if receipt is not None:
            if receipt["status"] != 1:
                return SubmissionCheck(SubmissionState.REVERTED, tx_hash)
            return SubmissionCheck(
                SubmissionState.CONFIRMED,
                tx_hash,
                block_number=int(receipt["blockNumber"]),
                gas_used=int(receipt["gasUsed"]),
            )

        if confirmed_nonce > nonce:
            self.logger.warning("Reward transfer dropped", tx_hash=tx_hash, nonce=nonce)
            return SubmissionCheck(SubmissionState.DROPPED, tx_hash)

        if raw_transaction and not await self.treasury.is_known(tx_hash):
            self.logger.info("Rebroadcasting reward transfer", tx_hash=tx_hash, nonce=nonce)
            await self.treasury.broadcast(raw_transaction)

        return SubmissionCheck(SubmissionState.PENDING, tx_hash)

    async def get_token_info(self) -> Dict[str, Any]:
        metadata = await self.treasury.get_token_metadata()
        balance_raw = await self.treasury.get_balance_raw()
        return {
            "token_address": self.treasury.token_address,
            "name": metadata["name"],
            "symbol": metadata["symbol"],
            "decimals": metadata["decimals"],
            "treasury_address": self.treasury.address,
            "treasury_balance": str(self._from_raw(balance_raw)),
            "reward_multiplier": str(self.settings.reward_multiplier),
            "min_funding_amount_usd": str(self.settings.min_funding_amount_usd),
        }

    async def estimate_reward_cost(self, funded_amount: Decimal, chain: Chain) -> Dict[str, Any]:
        """Reward amount plus gas estimate for a hypothetical funding."""
        calculation = await self.calculate_reward_amount(funded_amount, chain)
        gas_estimate = await self.treasury.estimate_transfer_gas(
            self.treasury.address, calculation.reward_tokens_raw
        )
        gas_limit = gas_estimate * (100 + self.settings.reward_gas_buffer_percent) // 100
        gas_price = await self.treasury.get_gas_price()

        return {
            "reward_amount": str(calculation.reward_amount),
            "usd_value": str(calculation.usd_value),
            "price_usd": str(calculation.price_usd),
            "gas_estimate": gas_estimate,
            "gas_limit": gas_limit,
            "gas_price_wei": gas_price,
            "gas_cost_eth": str(Decimal(gas_limit * gas_price) / Decimal(10) ** 18),
        }

    async def validate_reward_transfer(self, tx_hash: str) -> Dict[str, Any]:
        """Check that ``tx_hash`` is a successful call to the reward token contract."""
        receipt = await self.treasury.get_receipt(tx_hash)
        if receipt is None:
            return {"valid": False, "reason": "receipt_not_found"}
        if receipt["status"] != 1:
            return {"valid": False, "reason": "transaction_failed"}

        target = receipt.get("to")
        if not target or Web3.to_checksum_address(target) != self.treasury.token_address:
            return {"valid": False, "reason": "wrong_contract"}

        return {
            "valid": True,
            "block_number": int(receipt["blockNumber"]),
            "gas_used": int(receipt["gasUsed"]),
        }
