"""
Registry of chain adapters, looked up by chain.
"""

from typing import Dict, Iterable, List

import structlog

from funding_pipeline.core.config import Settings
from funding_pipeline.core.exceptions import UnsupportedChainError
from funding_pipeline.core.security import KeyCipher
from funding_pipeline.models.enums import Chain
from .base import ChainAdapter
from .bitcoin import BitcoinAdapter
from .ethereum import EthereumAdapter
from .solana import SolanaAdapter


logger = structlog.get_logger(__name__)


class ChainRegistry:
    """Holds one adapter per supported chain."""

    def __init__(self, adapters: Iterable[ChainAdapter]):
        self._adapters: Dict[Chain, ChainAdapter] = {}
        for adapter in adapters:
            self._adapters[adapter.chain] = adapter

    @classmethod
    def from_settings(cls, settings: Settings, cipher: KeyCipher) -> "ChainRegistry":
        return cls([
            BitcoinAdapter(settings, cipher),
            EthereumAdapter(settings, cipher),
            SolanaAdapter(settings, cipher),
        ])

    def get(self, chain: Chain) -> ChainAdapter:
        adapter = self._adapters.get(chain)
        if adapter is None:
            raise UnsupportedChainError(getattr(chain, "value", str(chain)))
        return adapter

    @property
    def chains(self) -> List[Chain]:
        return list(self._adapters)

    def __contains__(self, chain: Chain) -> bool:
        return chain in self._adapters

    async def close(self) -> None:
        for adapter in self._adapters.values():
            try:
                await adapter.close()
            except Exception as e:
                logger.warning("Failed to close chain adapter", chain=adapter.chain.value, error=str(e))
