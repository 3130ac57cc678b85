"""
Bitcoin deposit adapter.

Uses a bitcoind wallet over JSON-RPC when credentials are configured; the
node then owns the keys. Otherwise derives P2WPKH addresses from an account
xpub (no private keys held) and reads confirmations from the Blockstream
Esplora API.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp
from bip_utils import Bip32KeyNetVersions, Bip32Slip10Secp256k1, P2WPKHAddrEncoder

from funding_pipeline.core.config import Settings
from funding_pipeline.core.exceptions import ChainRPCError, ConfigurationError
from funding_pipeline.core.security import KeyCipher
from funding_pipeline.models.enums import Chain
from .base import ChainAdapter, GeneratedAddress, TransactionCheck, predates

SATOSHIS_PER_BTC = Decimal(10) ** 8

# tpub / tprv
TESTNET_KEY_NET_VERSIONS = Bip32KeyNetVersions(b"\x04\x35\x87\xcf", b"\x04\x35\x83\x94")


class BitcoinAdapter(ChainAdapter):
    """Bitcoin adapter: bitcoind RPC or xpub + Esplora."""

    chain = Chain.BTC

    def __init__(self, settings: Settings, cipher: KeyCipher):
        super().__init__(settings, cipher)
        self.use_rpc = bool(
            settings.bitcoin_rpc_url and settings.bitcoin_rpc_user and settings.bitcoin_rpc_pass
        )
        self.explorer_url = settings.btc_explorer_api_url.rstrip("/")
        self.hrp = "bc" if settings.btc_network == "mainnet" else "tb"
        self._account_key: Optional[Bip32Slip10Secp256k1] = None

    # Address generation

    async def generate_address(self, derivation_index: int) -> GeneratedAddress:
        if self.use_rpc:
            address = await self._rpc("getnewaddress", [f"deposit-{derivation_index}", "bech32"])
            return GeneratedAddress(address=address, derivation_index=derivation_index)

        return GeneratedAddress(
            address=self.derive_address(derivation_index),
            derivation_index=derivation_index,
        )

    def derive_address(self, derivation_index: int) -> str:
        """P2WPKH address at <xpub>/0/<index> (external chain)."""
        child = self._get_account_key().ChildKey(0).ChildKey(derivation_index)
        return P2WPKHAddrEncoder.EncodeKey(
            child.PublicKey().RawCompressed().ToBytes(),
            hrp=self.hrp,
            wit_ver=0,
        )

    def _get_account_key(self) -> Bip32Slip10Secp256k1:
        if self._account_key is None:
            if not self.settings.btc_xpub:
                raise ConfigurationError("BTC_XPUB or bitcoind RPC credentials are required for BTC deposits")
            if self.settings.btc_network == "mainnet":
                self._account_key = Bip32Slip10Secp256k1.FromExtendedKey(self.settings.btc_xpub)
            else:
                self._account_key = Bip32Slip10Secp256k1.FromExtendedKey(
                    self.settings.btc_xpub, TESTNET_KEY_NET_VERSIONS
                )
        return self._account_key

    # Confirmation checks

    async def _check_transactions(
        self,
        address: str,
        min_confirmations: int,
        since: Optional[datetime] = None
    ) -> TransactionCheck:
        if self.use_rpc:
            return await self._check_via_rpc(address, min_confirmations, since)
        return await self._check_via_explorer(address, min_confirmations, since)

    async def _check_via_rpc(
        self,
        address: str,
        min_confirmations: int,
        since: Optional[datetime] = None
    ) -> TransactionCheck:
        transactions = await self._rpc("listtransactions", ["*", 100, 0, True])
        received = [
            tx for tx in transactions
            if tx.get("category") == "receive" and tx.get("address") == address
            and not predates(tx.get("time"), since)
        ]
        if not received:
            return TransactionCheck.not_found()

        latest = max(received, key=lambda tx: tx.get("time", 0))
        confirmations = int(latest.get("confirmations", 0))
        confirmed = confirmations >= min_confirmations

        if confirmed:
            confirmed_amounts = [
                Decimal(str(tx["amount"])) for tx in received
                if int(tx.get("confirmations", 0)) >= min_confirmations
            ]
            amount = sum(confirmed_amounts, Decimal("0"))
        else:
            amount = Decimal(str(latest["amount"]))

        return TransactionCheck(
            confirmed=confirmed,
            amount=amount,
            tx_hash=latest.get("txid"),
            confirmations=max(confirmations, 0),
        )

    async def _check_via_explorer(
        self,
        address: str,
        min_confirmations: int,
        since: Optional[datetime] = None
    ) -> TransactionCheck:
        transactions: List[Dict[str, Any]] = await self._get_json(f"{self.explorer_url}/address/{address}/txs")

        # Esplora lists mempool transactions first, then newest confirmed
        for tx in transactions:
            received = sum(
                int(vout.get("value", 0))
                for vout in tx.get("vout", [])
                if vout.get("scriptpubkey_address") == address
            )
            if received <= 0:
                continue

            status = tx.get("status", {})
            if predates(status.get("block_time"), since):
                break

            confirmations = 0
            if status.get("confirmed") and status.get("block_height") is not None:
                tip_height = await self._get_chain_height()
                confirmations = max(tip_height - int(status["block_height"]) + 1, 0)

            return TransactionCheck(
                confirmed=confirmations >= min_confirmations,
                amount=Decimal(received) / SATOSHIS_PER_BTC,
                tx_hash=tx.get("txid"),
                confirmations=confirmations,
            )

        return TransactionCheck.not_found()

    async def _get_chain_height(self) -> int:
        if self.use_rpc:
            return int(await self._rpc("getblockcount", []))
        return int(await self._get_json(f"{self.explorer_url}/blocks/tip/height"))

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "1.0",
            "id": "funding-pipeline",
            "method": method,
            "params": params,
        }
        auth = aiohttp.BasicAuth(self.settings.bitcoin_rpc_user, self.settings.bitcoin_rpc_pass)
        data = await self._post_json(self.settings.bitcoin_rpc_url, payload, auth=auth)

        error = data.get("error")
        if error:
            message = error.get("message", error) if isinstance(error, dict) else error
            raise ChainRPCError(self.chain.value, f"{method}: {message}")
        return data.get("result")
