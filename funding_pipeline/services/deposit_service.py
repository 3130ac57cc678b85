"""
Deposit service - the request-deposit and check-status flows behind the API.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Optional

import structlog

from funding_pipeline.core.config import Settings, get_chain_config
from funding_pipeline.core.database import Database
from funding_pipeline.core.exceptions import UnsupportedChainError
from funding_pipeline.models import FundingRecord, Chain, FundingStatus, utcnow
from funding_pipeline.utils.validation import validate_address
from .address_pool import AddressPoolService
from .chain_monitor import ChainMonitor
from .funding_repository import FundingRepository


logger = structlog.get_logger(__name__)


@dataclass
class DepositStatus:
    """Check-status projection of a funding."""
    record: FundingRecord
    explorer_url: Optional[str]
    confirmed_now: bool = False


class DepositService:
    """Creates fundings and answers status queries."""

    def __init__(
        self,
        settings: Settings,
        db: Database,
        address_pool: AddressPoolService,
        fundings: FundingRepository,
        chain_monitor: ChainMonitor
    ):
        self.settings = settings
        self.db = db
        self.address_pool = address_pool
        self.fundings = fundings
        self.chain_monitor = chain_monitor
        self.logger = logger.bind(service="deposit_service")

    @staticmethod
    def parse_chain(value: str) -> Chain:
        try:
            return Chain.parse(value)
        except ValueError:
            raise UnsupportedChainError(str(value)) from None

    @staticmethod
    def qr_data(chain: Chain, address: str) -> str:
        return f"{get_chain_config(chain).uri_scheme}:{address}"

    async def request_deposit(self, user_address: str, chain: str) -> FundingRecord:
        """
        Assign a deposit address and create a PENDING funding.

        Rewards are ERC-20 transfers, so ``user_address`` must be an EVM
        address whatever chain the deposit arrives on.
        """
        chain_enum = self.parse_chain(chain)
        requester = validate_address(Chain.ETH, user_address).lower()
        config = get_chain_config(chain_enum)

        async with self.db.session() as s:
            entry = await self.address_pool.assign_address(chain_enum, session=s)
            record = await self.fundings.create(
                requester_address=requester,
                chain=chain_enum,
                deposit_address=entry.address,
                min_confirmations=config.min_confirmations,
                expires_at=utcnow() + timedelta(minutes=self.settings.deposit_ttl_minutes),
                session=s
            )

        self.logger.info(
            "Deposit requested",
            funding_id=record.id,
            chain=chain_enum.value,
            deposit_address=record.deposit_address
        )
        return record

    async def check_status(
        self,
        funding_id: str,
        on_confirmed: Optional[Callable[[FundingRecord], Awaitable[None]]] = None
    ) -> DepositStatus:
        """
        Current projection of a funding.

        A PENDING record past expiry is expired on the spot; an unexpired
        one gets an immediate chain check, and if that confirms it
        ``on_confirmed`` is awaited with the updated record.
        """
        record = await self.fundings.get_or_raise(funding_id)
        confirmed_now = False

        if record.status == FundingStatus.PENDING:
            now = utcnow()
            if record.is_expired(now):
                await self.fundings.expire(record.id, now)
            else:
                result = await self.chain_monitor.check_funding_status(record)
                confirmed_now = (await self.chain_monitor.process_results([result])) > 0
            record = await self.fundings.get_or_raise(funding_id)

        if confirmed_now and on_confirmed is not None:
            await on_confirmed(record)

        explorer_url = get_chain_config(record.chain).explorer_url(record.funding_tx_hash)
        return DepositStatus(record=record, explorer_url=explorer_url, confirmed_now=confirmed_now)
