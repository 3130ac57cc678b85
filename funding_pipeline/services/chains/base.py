"""
Chain adapter interface.

Every adapter can generate a receiving address from a derivation index and
report the most recent inbound transfer to an address with its confirmation
depth. Adapters never raise out of ``check_transactions``: a failing node or
explorer yields an unconfirmed result carrying the error text.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

import aiohttp
import structlog

from funding_pipeline.core.config import Settings, ChainConfig, get_chain_config
from funding_pipeline.core.exceptions import ChainRPCError
from funding_pipeline.core.security import KeyCipher
from funding_pipeline.models.enums import Chain


logger = structlog.get_logger(__name__)


@dataclass
class GeneratedAddress:
    """Freshly derived receiving address."""
    address: str
    derivation_index: int
    encrypted_private_key: Optional[str] = None


@dataclass
class TransactionCheck:
    """Normalized inbound transfer observation."""
    confirmed: bool
    amount: Decimal
    tx_hash: Optional[str] = None
    confirmations: int = 0
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> "TransactionCheck":
        return cls(confirmed=False, amount=Decimal("0"), error=error)

    @classmethod
    def not_found(cls) -> "TransactionCheck":
        return cls(confirmed=False, amount=Decimal("0"))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["amount"] = str(self.amount)
        return data


def predates(timestamp: Optional[float], since: Optional[datetime]) -> bool:
    """True when a unix ``timestamp`` is older than the naive-UTC ``since``."""
    if timestamp is None or since is None:
        return False
    if since.tzinfo is not None:
        since = since.astimezone(timezone.utc).replace(tzinfo=None)
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).replace(tzinfo=None) < since.replace(microsecond=0)


class ChainAdapter(ABC):
    """Base class for per-chain deposit adapters."""

    chain: Chain

    def __init__(self, settings: Settings, cipher: KeyCipher):
        self.settings = settings
        self.cipher = cipher
        self._http: Optional[aiohttp.ClientSession] = None
        self.logger = logger.bind(service=f"{self.chain.value.lower()}_adapter")

    @property
    def config(self) -> ChainConfig:
        return get_chain_config(self.chain)

    @property
    def min_confirmations(self) -> int:
        return self.config.min_confirmations

    @abstractmethod
    async def generate_address(self, derivation_index: int) -> GeneratedAddress:
        """Derive the receiving address for ``derivation_index``."""

    @abstractmethod
    async def _check_transactions(
        self,
        address: str,
        min_confirmations: int,
        since: Optional[datetime] = None
    ) -> TransactionCheck:
        """Chain-specific lookup; may raise. Transfers older than ``since`` are ignored."""

    @abstractmethod
    async def _get_chain_height(self) -> int:
        """Current block height / slot."""

    async def check_transactions(
        self,
        address: str,
        min_confirmations: Optional[int] = None,
        since: Optional[datetime] = None
    ) -> TransactionCheck:
        """
        Inspect the chain for the latest inbound transfer to ``address``.

        Transfers made before ``since`` belong to an earlier user of the
        address and are not reported.

        Returns an unconfirmed zero-amount result with ``error`` set when the
        node or explorer fails.
        """
        if min_confirmations is None:
            min_confirmations = self.min_confirmations

        try:
            return await self._check_transactions(address, min_confirmations, since)
        except Exception as e:
            self.logger.warning(
                "Transaction check failed",
                address=address,
                error=str(e)
            )
            return TransactionCheck.failed(str(e))

    async def get_chain_status(self) -> Dict[str, Any]:
        """Connectivity and height of the chain backend."""
        try:
            height = await self._get_chain_height()
            return {
                "chain": self.chain.value,
                "connected": True,
                "height": height,
            }
        except Exception as e:
            self.logger.warning("Chain status check failed", error=str(e))
            return {
                "chain": self.chain.value,
                "connected": False,
                "height": None,
                "error": str(e),
            }

    async def close(self) -> None:
        if self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None

    def _get_http(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.chain_check_timeout)
            )
        return self._http

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        session = self._get_http()
        async with session.get(url, params=params) as response:
            if response.status != 200:
                body = await response.text()
                raise ChainRPCError(self.chain.value, f"HTTP {response.status} from {url}: {body[:200]}")
            return await response.json(content_type=None)

    async def _post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        auth: Optional[aiohttp.BasicAuth] = None
    ) -> Any:
        session = self._get_http()
        async with session.post(url, json=payload, auth=auth) as response:
            if response.status not in (200, 500):
                body = await response.text()
                raise ChainRPCError(self.chain.value, f"HTTP {response.status} from {url}: {body[:200]}")
            # bitcoind reports RPC errors with HTTP 500 and a JSON body
            return await response.json(content_type=None)
