"""
Chain monitor - confirms pending fundings against the chains.

Pending records are checked oldest first in small batches with a pause
between batches. Every item settles independently: a timeout or adapter
failure becomes an unconfirmed result for that record only and is retried on
the next cycle. Confirmation and enqueue happen in one transaction guarded by
the ``status = pending`` condition, so concurrent cycles cannot confirm or
enqueue twice.
"""

import asyncio
from dataclasses import dataclass, asdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import structlog

from funding_pipeline.core.config import Settings
from funding_pipeline.core.database import Database
from funding_pipeline.models import FundingRecord, Chain
from .chains import ChainRegistry
from .funding_repository import FundingRepository
from .reward_queue import RewardQueue


logger = structlog.get_logger(__name__)


@dataclass
class ConfirmationResult:
    """Normalized outcome of checking one funding."""
    funding_id: str
    chain: Chain
    deposit_address: str
    confirmed: bool
    amount: Decimal
    tx_hash: Optional[str] = None
    confirmations: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["chain"] = self.chain.value
        data["amount"] = str(self.amount)
        return data


class ChainMonitor:
    """Polls chain adapters for pending fundings."""

    def __init__(
        self,
        settings: Settings,
        db: Database,
        registry: ChainRegistry,
        fundings: FundingRepository,
        queue: RewardQueue
    ):
        self.settings = settings
        self.db = db
        self.registry = registry
        self.fundings = fundings
        self.queue = queue
        self.batch_size = settings.chain_check_batch_size
        self.batch_delay = settings.chain_check_batch_delay
        self.check_timeout = settings.chain_check_timeout
        self.logger = logger.bind(service="chain_monitor")

    async def check_funding_status(self, record: FundingRecord) -> ConfirmationResult:
        """Ask the record's chain adapter about its deposit address."""
        def result(**kwargs) -> ConfirmationResult:
            return ConfirmationResult(
                funding_id=record.id,
                chain=record.chain,
                deposit_address=record.deposit_address,
                **kwargs
            )

        try:
            adapter = self.registry.get(record.chain)
            check = await asyncio.wait_for(
                adapter.check_transactions(
                    record.deposit_address,
                    record.min_confirmations,
                    since=record.created_at
                ),
                timeout=self.check_timeout
            )
        except asyncio.TimeoutError:
            self.logger.warning("Chain check timed out", funding_id=record.id, chain=record.chain.value)
            return result(confirmed=False, amount=Decimal("0"), error="timeout")
        except Exception as e:
            self.logger.warning("Chain check failed", funding_id=record.id, error=str(e))
            return result(confirmed=False, amount=Decimal("0"), error=str(e))

        return result(
            confirmed=check.confirmed and check.amount > 0,
            amount=check.amount,
            tx_hash=check.tx_hash,
            confirmations=check.confirmations,
            error=check.error,
        )

    async def batch_check_fundings(self, records: Sequence[FundingRecord]) -> List[ConfirmationResult]:
        """Check records in batches; every record yields a result."""
        results: List[ConfirmationResult] = []

        for start in range(0, len(records), self.batch_size):
            if start > 0 and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

            batch = records[start:start + self.batch_size]
            outcomes = await asyncio.gather(
                *(self.check_funding_status(record) for record in batch),
                return_exceptions=True
            )

            for record, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    outcome = ConfirmationResult(
                        funding_id=record.id,
                        chain=record.chain,
                        deposit_address=record.deposit_address,
                        confirmed=False,
                        amount=Decimal("0"),
                        error=str(outcome),
                    )
                results.append(outcome)

        return results

    async def confirm_funding(self, result: ConfirmationResult) -> bool:
        """
        PENDING -> CONFIRMED plus reward enqueue, atomically.

        Returns False if another cycle already moved the record on, or if the
        transaction was already credited to an earlier funding on the same
        deposit address.
        """
        async with self.db.session() as s:
            if result.tx_hash:
                earlier = await self.fundings.find_by_funding_tx(
                    result.deposit_address,
                    result.tx_hash,
                    exclude_id=result.funding_id,
                    session=s
                )
                if earlier is not None:
                    self.logger.warning(
                        "Deposit already credited to another funding",
                        funding_id=result.funding_id,
                        other_funding_id=earlier.id,
                        tx_hash=result.tx_hash
                    )
                    return False

            confirmed = await self.fundings.mark_confirmed(
                result.funding_id,
                result.amount,
                result.tx_hash,
                result.confirmations,
                session=s
            )
            if not confirmed:
                return False

            record = await self.fundings.get(result.funding_id, session=s)
            await self.queue.add_to_queue(
                record.id,
                record.requester_address,
                result.amount,
                record.chain,
                session=s
            )

        self.logger.info(
            "Funding confirmed",
            funding_id=result.funding_id,
            chain=result.chain.value,
            amount=str(result.amount),
            tx_hash=result.tx_hash,
            confirmations=result.confirmations
        )
        return True

    async def process_results(self, results: Sequence[ConfirmationResult]) -> int:
        """Apply check results; returns how many fundings this call confirmed."""
        confirmed = 0
        for result in results:
            try:
                if result.confirmed:
                    if await self.confirm_funding(result):
                        confirmed += 1
                elif result.confirmations > 0 or result.tx_hash:
                    await self.fundings.update_confirmations(
                        result.funding_id,
                        result.confirmations,
                        result.tx_hash
                    )
            except Exception as e:
                self.logger.error("Failed to apply check result", funding_id=result.funding_id, error=str(e))
        return confirmed

    async def check_pending_fundings(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """One monitor cycle over all unexpired PENDING fundings."""
        records = await self.fundings.list_pending(now=now, limit=self.settings.pending_scan_limit)
        if not records:
            return {"checked": 0, "confirmed": 0, "errors": 0, "results": []}

        results = await self.batch_check_fundings(records)
        confirmed = await self.process_results(results)
        errors = sum(1 for r in results if r.error)

        self.logger.info("Pending fundings checked", checked=len(results), confirmed=confirmed, errors=errors)
        return {
            "checked": len(results),
            "confirmed": confirmed,
            "errors": errors,
            "results": [r.to_dict() for r in results],
        }
