"""
Solana deposit adapter.
"""

import hashlib
from datetime import datetime
from decimal import Decimal
from typing import Optional

import base58
from solana.rpc.async_api import AsyncClient
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction_status import TransactionConfirmationStatus

from funding_pipeline.core.config import Settings
from funding_pipeline.core.exceptions import ConfigurationError
from funding_pipeline.core.security import KeyCipher
from funding_pipeline.models.enums import Chain
from .base import ChainAdapter, GeneratedAddress, TransactionCheck, predates

LAMPORTS_PER_SOL = Decimal(10) ** 9

FINALIZED_DEPTH = 32


def confirmation_depth(status: Optional[TransactionConfirmationStatus]) -> int:
    """Commitment level expressed as confirmation depth."""
    if status == TransactionConfirmationStatus.Finalized:
        return FINALIZED_DEPTH
    if status == TransactionConfirmationStatus.Confirmed:
        return 1
    return 0


class SolanaAdapter(ChainAdapter):
    """Solana adapter: seed-derived keypairs + signature scan."""

    chain = Chain.SOL

    def __init__(self, settings: Settings, cipher: KeyCipher, client: Optional[AsyncClient] = None):
        super().__init__(settings, cipher)
        self.client = client or AsyncClient(settings.sol_rpc_url, timeout=settings.chain_check_timeout)

    def derive_keypair(self, derivation_index: int) -> Keypair:
        """Keypair seeded with sha256(master_seed || index)."""
        if not self.settings.sol_master_seed:
            raise ConfigurationError("SOL_MASTER_SEED is required for SOL deposits")
        seed = hashlib.sha256(f"{self.settings.sol_master_seed}{derivation_index}".encode("utf-8")).digest()
        return Keypair.from_seed(seed)

    async def generate_address(self, derivation_index: int) -> GeneratedAddress:
        keypair = self.derive_keypair(derivation_index)
        secret = base58.b58encode(bytes(keypair)).decode("ascii")
        return GeneratedAddress(
            address=str(keypair.pubkey()),
            derivation_index=derivation_index,
            encrypted_private_key=self.cipher.encrypt(secret),
        )

    async def _check_transactions(
        self,
        address: str,
        min_confirmations: int,
        since: Optional[datetime] = None
    ) -> TransactionCheck:
        pubkey = Pubkey.from_string(address)
        response = await self.client.get_signatures_for_address(
            pubkey,
            limit=self.settings.sol_signature_limit
        )

        # Newest first
        for sig_info in response.value:
            if sig_info.err is not None:
                continue
            if predates(sig_info.block_time, since):
                break

            tx_response = await self.client.get_transaction(
                sig_info.signature,
                encoding="json",
                max_supported_transaction_version=0
            )
            if not tx_response.value:
                continue

            tx = tx_response.value
            meta = tx.transaction.meta
            if meta is None:
                continue

            account_keys = [str(key) for key in tx.transaction.transaction.message.account_keys]
            if address not in account_keys:
                continue

            index = account_keys.index(address)
            delta = meta.post_balances[index] - meta.pre_balances[index]
            if delta <= 0:
                continue

            confirmations = confirmation_depth(sig_info.confirmation_status)
            return TransactionCheck(
                confirmed=confirmations >= min_confirmations,
                amount=Decimal(delta) / LAMPORTS_PER_SOL,
                tx_hash=str(sig_info.signature),
                confirmations=confirmations,
            )

        return TransactionCheck.not_found()

    async def _get_chain_height(self) -> int:
        response = await self.client.get_slot()
        return int(response.value)

    async def close(self) -> None:
        await super().close()
        await self.client.close()
