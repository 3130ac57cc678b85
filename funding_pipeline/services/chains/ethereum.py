"""
Ethereum deposit adapter.

Addresses are derived from ETH_MNEMONIC along m/44'/60'/0'/0/<index>; the
private key is stored encrypted. Inbound transfers are found through the
Etherscan account API when a key is configured, otherwise by scanning the
most recent blocks on the RPC node.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from eth_account import Account
from web3 import AsyncWeb3, Web3

from funding_pipeline.core.config import Settings
from funding_pipeline.core.exceptions import ChainRPCError, ConfigurationError
from funding_pipeline.core.security import KeyCipher
from funding_pipeline.models.enums import Chain
from .base import ChainAdapter, GeneratedAddress, TransactionCheck, predates

WEI_PER_ETH = Decimal(10) ** 18

Account.enable_unaudited_hdwallet_features()


class EthereumAdapter(ChainAdapter):
    """Ethereum adapter: HD wallet + Etherscan / block scan."""

    chain = Chain.ETH

    def __init__(self, settings: Settings, cipher: KeyCipher, w3: Optional[AsyncWeb3] = None):
        super().__init__(settings, cipher)
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(settings.eth_rpc_url))

    @staticmethod
    def derivation_path(derivation_index: int) -> str:
        return f"m/44'/60'/0'/0/{derivation_index}"

    async def generate_address(self, derivation_index: int) -> GeneratedAddress:
        if not self.settings.eth_mnemonic:
            raise ConfigurationError("ETH_MNEMONIC is required for ETH deposits")

        account = Account.from_mnemonic(
            self.settings.eth_mnemonic,
            account_path=self.derivation_path(derivation_index)
        )
        return GeneratedAddress(
            address=account.address,
            derivation_index=derivation_index,
            encrypted_private_key=self.cipher.encrypt(account.key.hex()),
        )

    async def _check_transactions(
        self,
        address: str,
        min_confirmations: int,
        since: Optional[datetime] = None
    ) -> TransactionCheck:
        if self.settings.etherscan_api_key:
            return await self._check_via_etherscan(address, min_confirmations, since)
        return await self._check_via_block_scan(address, min_confirmations, since)

    async def _check_via_etherscan(
        self,
        address: str,
        min_confirmations: int,
        since: Optional[datetime] = None
    ) -> TransactionCheck:
        params = {
            "module": "account",
            "action": "txlist",
            "address": address,
            "startblock": 0,
            "endblock": 99999999,
            "sort": "desc",
            "apikey": self.settings.etherscan_api_key,
        }
        data: Dict[str, Any] = await self._get_json(self.settings.etherscan_api_url, params=params)

        if data.get("status") != "1":
            # "No transactions found" comes back as status 0 with an empty list
            if isinstance(data.get("result"), list):
                return TransactionCheck.not_found()
            raise ChainRPCError(self.chain.value, f"Etherscan: {data.get('message')} {data.get('result')}")

        for tx in data["result"]:
            if (tx.get("to") or "").lower() != address.lower():
                continue
            if tx.get("isError") == "1" or int(tx.get("value", "0")) <= 0:
                continue
            if predates(tx.get("timeStamp"), since):
                break

            confirmations = int(tx.get("confirmations", "0"))
            return TransactionCheck(
                confirmed=confirmations >= min_confirmations,
                amount=Decimal(int(tx["value"])) / WEI_PER_ETH,
                tx_hash=tx.get("hash"),
                confirmations=confirmations,
            )

        return TransactionCheck.not_found()

    async def _check_via_block_scan(
        self,
        address: str,
        min_confirmations: int,
        since: Optional[datetime] = None
    ) -> TransactionCheck:
        target = address.lower()
        latest = await self.w3.eth.block_number
        lowest = max(latest - self.settings.eth_scan_blocks + 1, 0)

        for number in range(latest, lowest - 1, -1):
            block = await self.w3.eth.get_block(number, full_transactions=True)
            if predates(block.get("timestamp"), since):
                break
            for tx in block["transactions"]:
                to = tx.get("to")
                if not to or to.lower() != target or int(tx.get("value", 0)) <= 0:
                    continue

                confirmations = latest - number + 1
                return TransactionCheck(
                    confirmed=confirmations >= min_confirmations,
                    amount=Decimal(int(tx["value"])) / WEI_PER_ETH,
                    tx_hash=Web3.to_hex(tx["hash"]),
                    confirmations=confirmations,
                )

        return TransactionCheck.not_found()

    async def _get_chain_height(self) -> int:
        return int(await self.w3.eth.block_number)
