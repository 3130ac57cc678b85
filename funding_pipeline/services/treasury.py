"""
ERC-20 treasury client used to pay reward tokens.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import structlog
from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound, TimeExhausted

from funding_pipeline.core.config import Settings
from funding_pipeline.core.exceptions import ConfigurationError, RewardTransferError


logger = structlog.get_logger(__name__)


ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "name",
        "outputs": [{"name": "", "type": "string"}],
        "type": "function",
    },
]


@dataclass
class SignedTransfer:
    """A signed, not yet confirmed, reward transfer."""
    tx_hash: str
    nonce: int
    raw_transaction: str


class Erc20Treasury:
    """Signs and submits reward token transfers from the treasury account."""

    def __init__(self, settings: Settings, w3: Optional[AsyncWeb3] = None):
        if not settings.reward_configured:
            raise ConfigurationError("REWARD_TOKEN_ADDRESS and REWARD_TREASURY_PRIVATE_KEY are required")

        self.settings = settings
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(settings.reward_rpc_url or settings.eth_rpc_url))
        self.account = Account.from_key(settings.reward_treasury_private_key)
        self.token_address = Web3.to_checksum_address(settings.reward_token_address)
        self.token = self.w3.eth.contract(address=self.token_address, abi=ERC20_ABI)
        self.logger = logger.bind(service="treasury")

    @property
    def address(self) -> str:
        return self.account.address

    async def get_balance_raw(self) -> int:
        """Treasury token balance in base units."""
        try:
            return int(await self.token.functions.balanceOf(self.address).call())
        except Exception as e:
            raise RewardTransferError(f"Failed to read treasury balance: {e}") from e

    async def get_token_metadata(self) -> Dict[str, Any]:
        name = await self.token.functions.name().call()
        symbol = await self.token.functions.symbol().call()
        decimals = await self.token.functions.decimals().call()
        return {"name": name, "symbol": symbol, "decimals": int(decimals)}

    async def get_eth_balance(self) -> Decimal:
        balance = await self.w3.eth.get_balance(self.address)
        return Decimal(balance) / Decimal(10) ** 18

    async def estimate_transfer_gas(self, to_address: str, amount_raw: int) -> int:
        try:
            return int(
                await self.token.functions.transfer(to_address, amount_raw).estimate_gas({"from": self.address})
            )
        except Exception as e:
            raise RewardTransferError(f"Gas estimation failed: {e}", {"to": to_address}) from e

    async def get_fee_params(self) -> Dict[str, int]:
        """EIP-1559 fees when the chain reports a base fee, legacy gas price otherwise."""
        block = await self.w3.eth.get_block("latest")
        base_fee = block.get("baseFeePerGas")
        if base_fee is None:
            return {"gasPrice": int(await self.w3.eth.gas_price)}

        priority_fee = int(await self.w3.eth.max_priority_fee)
        return {
            "maxPriorityFeePerGas": priority_fee,
            "maxFeePerGas": int(base_fee) * 2 + priority_fee,
        }

    async def sign_transfer(self, to_address: str, amount_raw: int, gas_limit: int) -> SignedTransfer:
        """Build and sign a transfer at the next pending nonce. Nothing is broadcast."""
        try:
            nonce = await self.w3.eth.get_transaction_count(self.address, "pending")
            tx_params = {
                "from": self.address,
                "nonce": nonce,
                "gas": gas_limit,
                "chainId": self.settings.reward_chain_id,
            }
            tx_params.update(await self.get_fee_params())

            tx = await self.token.functions.transfer(to_address, amount_raw).build_transaction(tx_params)
            signed = self.account.sign_transaction(tx)
        except Exception as e:
            raise RewardTransferError(f"Failed to build reward transfer: {e}", {"to": to_address}) from e

        return SignedTransfer(
            tx_hash=Web3.to_hex(signed.hash),
            nonce=int(nonce),
            raw_transaction=Web3.to_hex(signed.raw_transaction),
        )

    async def broadcast(self, raw_transaction: str) -> str:
        """Send a signed transfer. Re-sending the same bytes is harmless."""
        try:
            tx_hash = await self.w3.eth.send_raw_transaction(raw_transaction)
        except Exception as e:
            if "already known" in str(e).lower():
                return Web3.to_hex(Web3.keccak(hexstr=raw_transaction))
            raise RewardTransferError(f"Failed to submit reward transfer: {e}") from e

        tx_hash_hex = Web3.to_hex(tx_hash)
        self.logger.info("Reward transfer submitted", tx_hash=tx_hash_hex)
        return tx_hash_hex

    async def wait_for_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Receipt once mined, or None if none arrives within the receipt timeout."""
        try:
            return await self.w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.settings.reward_receipt_timeout
            )
        except TimeExhausted:
            self.logger.warning("No reward transfer receipt yet", tx_hash=tx_hash)
            return None

    async def get_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None

    async def is_known(self, tx_hash: str) -> bool:
        """Whether the node has the transaction, mined or in its mempool."""
        try:
            await self.w3.eth.get_transaction(tx_hash)
            return True
        except TransactionNotFound:
            return False

    async def get_confirmed_nonce(self) -> int:
        """Transactions from the treasury included in the latest block."""
        return int(await self.w3.eth.get_transaction_count(self.address, "latest"))

    async def get_gas_price(self) -> int:
        return int(await self.w3.eth.gas_price)
