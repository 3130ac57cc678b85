"""
Reward queue - durable, priority-ordered payout work queue.

Claiming is a conditional ``pending -> processing`` update; a caller that
loses the race gets None and moves on.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import structlog
from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from funding_pipeline.core.database import Database, insert_ignore
from funding_pipeline.core.exceptions import DatabaseError
from funding_pipeline.models import RewardQueueEntry, Chain, RewardQueueStatus, utcnow


logger = structlog.get_logger(__name__)


class RewardQueue:
    """Reward queue operations."""

    def __init__(self, db: Database):
        self.db = db
        self.logger = logger.bind(service="reward_queue")

    async def add_to_queue(
        self,
        funding_id: str,
        requester_address: str,
        funded_amount: Decimal,
        chain: Chain,
        priority: int = 0,
        session: Optional[AsyncSession] = None
    ) -> Optional[int]:
        """
        Enqueue a payout for ``funding_id``.

        Returns the new queue id, or None if the funding is already queued.
        """
        async with self.db.session(session) as s:
            now = utcnow()
            result = await s.execute(
                insert_ignore(
                    s,
                    RewardQueueEntry,
                    {
                        "funding_id": funding_id,
                        "requester_address": requester_address,
                        "funded_amount": funded_amount,
                        "chain": chain,
                        "priority": priority,
                        "status": RewardQueueStatus.PENDING,
                        "retry_count": 0,
                        "created_at": now,
                        "updated_at": now,
                    },
                    ["funding_id"]
                )
            )
            queue_id = result.scalar_one_or_none()

        if queue_id is None:
            self.logger.debug("Funding already queued", funding_id=funding_id)
        else:
            self.logger.info("Reward queued", funding_id=funding_id, queue_id=queue_id, chain=chain.value)
        return queue_id

    async def get(self, queue_id: int, session: Optional[AsyncSession] = None) -> Optional[RewardQueueEntry]:
        async with self.db.session(session) as s:
            return await s.get(RewardQueueEntry, queue_id, populate_existing=True)

    async def get_by_funding(
        self,
        funding_id: str,
        session: Optional[AsyncSession] = None
    ) -> Optional[RewardQueueEntry]:
        async with self.db.session(session) as s:
            result = await s.execute(
                select(RewardQueueEntry).where(RewardQueueEntry.funding_id == funding_id)
            )
            return result.scalar_one_or_none()

    async def get_next_pending_reward(
        self,
        exclude_ids: Sequence[int] = (),
        session: Optional[AsyncSession] = None
    ) -> Optional[RewardQueueEntry]:
        """Highest priority first, oldest first within a priority."""
        conditions = [RewardQueueEntry.status == RewardQueueStatus.PENDING]
        if exclude_ids:
            conditions.append(RewardQueueEntry.id.not_in(list(exclude_ids)))

        async with self.db.session(session) as s:
            result = await s.execute(
                select(RewardQueueEntry)
                .where(*conditions)
                .order_by(
                    RewardQueueEntry.priority.desc(),
                    RewardQueueEntry.created_at.asc(),
                    RewardQueueEntry.id.asc()
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def mark_as_processing(
        self,
        queue_id: int,
        session: Optional[AsyncSession] = None
    ) -> Optional[RewardQueueEntry]:
        """Claim a pending entry. Returns None if it is no longer pending."""
        async with self.db.session(session) as s:
            result = await s.execute(
                update(RewardQueueEntry)
                .where(
                    RewardQueueEntry.id == queue_id,
                    RewardQueueEntry.status == RewardQueueStatus.PENDING
                )
                .values(status=RewardQueueStatus.PROCESSING, processing_started_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.logger.debug("Queue entry already claimed", queue_id=queue_id)
                return None
            return await s.get(RewardQueueEntry, queue_id, populate_existing=True)

    async def record_submission(
        self,
        queue_id: int,
        tx_hash: str,
        nonce: int,
        raw_transaction: str,
        reward_amount: Decimal,
        session: Optional[AsyncSession] = None
    ) -> None:
        """Attach a signed transfer to a claimed entry before it is broadcast."""
        async with self.db.session(session) as s:
            result = await s.execute(
                update(RewardQueueEntry)
                .where(
                    RewardQueueEntry.id == queue_id,
                    RewardQueueEntry.status == RewardQueueStatus.PROCESSING,
                    RewardQueueEntry.submitted_tx_hash.is_(None)
                )
                .values(
                    submitted_tx_hash=tx_hash,
                    submitted_nonce=nonce,
                    submitted_raw_tx=raw_transaction,
                    submitted_at=utcnow(),
                    reward_amount=reward_amount
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise DatabaseError(
                    "Reward queue entry is not claimable for submission",
                    {"queue_id": queue_id, "tx_hash": tx_hash}
                )

    async def clear_submission(self, queue_id: int, session: Optional[AsyncSession] = None) -> bool:
        """Forget a transfer that can no longer be mined."""
        async with self.db.session(session) as s:
            result = await s.execute(
                update(RewardQueueEntry)
                .where(RewardQueueEntry.id == queue_id)
                .values(
                    submitted_tx_hash=None,
                    submitted_nonce=None,
                    submitted_raw_tx=None,
                    submitted_at=None
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def release_awaiting(
        self,
        queue_id: int,
        message: str,
        session: Optional[AsyncSession] = None
    ) -> bool:
        """Return a claimed entry whose transfer awaits a receipt to pending, retry count untouched."""
        async with self.db.session(session) as s:
            result = await s.execute(
                update(RewardQueueEntry)
                .where(
                    RewardQueueEntry.id == queue_id,
                    RewardQueueEntry.status == RewardQueueStatus.PROCESSING
                )
                .values(status=RewardQueueStatus.PENDING, error_message=message)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def mark_as_completed(
        self,
        queue_id: int,
        tx_hash: str,
        reward_amount: Optional[Decimal] = None,
        session: Optional[AsyncSession] = None
    ) -> bool:
        async with self.db.session(session) as s:
            result = await s.execute(
                update(RewardQueueEntry)
                .where(
                    RewardQueueEntry.id == queue_id,
                    RewardQueueEntry.status == RewardQueueStatus.PROCESSING
                )
                .values(
                    status=RewardQueueStatus.COMPLETED,
                    reward_tx_hash=tx_hash,
                    reward_amount=reward_amount,
                    error_message=None,
                    completed_at=utcnow()
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def mark_as_failed(
        self,
        queue_id: int,
        error_message: str,
        retry_count: int,
        session: Optional[AsyncSession] = None
    ) -> bool:
        async with self.db.session(session) as s:
            result = await s.execute(
                update(RewardQueueEntry)
                .where(
                    RewardQueueEntry.id == queue_id,
                    RewardQueueEntry.status == RewardQueueStatus.PROCESSING
                )
                .values(
                    status=RewardQueueStatus.FAILED,
                    error_message=error_message,
                    retry_count=retry_count
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def get_failed_rewards(
        self,
        max_retries: int = 3,
        limit: int = 100,
        session: Optional[AsyncSession] = None
    ) -> List[RewardQueueEntry]:
        """Failed entries still under the retry ceiling, oldest failure first."""
        async with self.db.session(session) as s:
            result = await s.execute(
                select(RewardQueueEntry)
                .where(
                    RewardQueueEntry.status == RewardQueueStatus.FAILED,
                    RewardQueueEntry.retry_count < max_retries
                )
                .order_by(RewardQueueEntry.updated_at.asc(), RewardQueueEntry.id.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def retry_failed_reward(
        self,
        queue_id: int,
        max_retries: Optional[int] = None,
        session: Optional[AsyncSession] = None
    ) -> bool:
        """Move a failed entry back to pending, bumping its retry count."""
        conditions = [
            RewardQueueEntry.id == queue_id,
            RewardQueueEntry.status == RewardQueueStatus.FAILED,
        ]
        if max_retries is not None:
            conditions.append(RewardQueueEntry.retry_count < max_retries)

        async with self.db.session(session) as s:
            result = await s.execute(
                update(RewardQueueEntry)
                .where(*conditions)
                .values(
                    status=RewardQueueStatus.PENDING,
                    retry_count=RewardQueueEntry.retry_count + 1,
                    error_message=None,
                    processing_started_at=None
                )
                .execution_options(synchronize_session=False)
            )
            retried = result.rowcount == 1

        if retried:
            self.logger.info("Reward requeued", queue_id=queue_id)
        return retried

    async def prune_exhausted_failures(
        self,
        max_retries: int,
        retention_days: int,
        now: Optional[datetime] = None,
        session: Optional[AsyncSession] = None
    ) -> int:
        """Delete failed entries at the retry ceiling older than the retention window."""
        now = now or utcnow()
        cutoff = now - timedelta(days=retention_days)

        async with self.db.session(session) as s:
            result = await s.execute(
                delete(RewardQueueEntry)
                .where(
                    RewardQueueEntry.status == RewardQueueStatus.FAILED,
                    RewardQueueEntry.retry_count >= max_retries,
                    RewardQueueEntry.updated_at < cutoff
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    async def get_queue_stats(self, session: Optional[AsyncSession] = None) -> Dict[str, Any]:
        """Count and average processing time (seconds) per status."""
        stats: Dict[str, Any] = {
            status.value: {"count": 0, "avg_processing_seconds": None}
            for status in RewardQueueStatus
        }

        async with self.db.session(session) as s:
            counts = await s.execute(
                select(RewardQueueEntry.status, func.count()).group_by(RewardQueueEntry.status)
            )
            for status, count in counts.all():
                stats[status.value]["count"] = count

            timings = await s.execute(
                select(
                    RewardQueueEntry.status,
                    RewardQueueEntry.processing_started_at,
                    RewardQueueEntry.updated_at
                )
                .where(
                    RewardQueueEntry.processing_started_at.is_not(None),
                    RewardQueueEntry.status.in_([RewardQueueStatus.COMPLETED, RewardQueueStatus.FAILED])
                )
                .order_by(RewardQueueEntry.updated_at.desc())
                .limit(1000)
            )

            durations: Dict[str, List[float]] = {}
            for status, started, finished in timings.all():
                durations.setdefault(status.value, []).append((finished - started).total_seconds())

        for status, values in durations.items():
            stats[status]["avg_processing_seconds"] = round(sum(values) / len(values), 3)

        stats["total"] = sum(stats[status.value]["count"] for status in RewardQueueStatus)
        return stats
