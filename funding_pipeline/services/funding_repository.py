"""
Funding record store.

Every status change is an ``UPDATE ... WHERE status = <expected>`` whose row
count decides whether this caller performed the transition. A transition the
lifecycle does not allow raises InvalidStatusTransitionError before touching
the database.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from funding_pipeline.core.database import Database
from funding_pipeline.core.exceptions import FundingNotFoundError, InvalidStatusTransitionError
from funding_pipeline.models import FundingRecord, Chain, FundingStatus, utcnow


logger = structlog.get_logger(__name__)


class FundingRepository:
    """Durable store of funding records."""

    def __init__(self, db: Database):
        self.db = db
        self.logger = logger.bind(service="funding_repository")

    async def create(
        self,
        requester_address: str,
        chain: Chain,
        deposit_address: str,
        min_confirmations: int,
        expires_at: datetime,
        requested_amount: Optional[Decimal] = None,
        session: Optional[AsyncSession] = None
    ) -> FundingRecord:
        async with self.db.session(session) as s:
            record = FundingRecord(
                requester_address=requester_address,
                chain=chain,
                deposit_address=deposit_address,
                requested_amount=requested_amount,
                status=FundingStatus.PENDING,
                confirmations=0,
                min_confirmations=min_confirmations,
                expires_at=expires_at,
            )
            s.add(record)
            await s.flush()

        self.logger.info(
            "Funding record created",
            funding_id=record.id,
            chain=chain.value,
            deposit_address=deposit_address
        )
        return record

    async def get(self, funding_id: str, session: Optional[AsyncSession] = None) -> Optional[FundingRecord]:
        async with self.db.session(session) as s:
            return await s.get(FundingRecord, funding_id, populate_existing=True)

    async def get_or_raise(self, funding_id: str, session: Optional[AsyncSession] = None) -> FundingRecord:
        record = await self.get(funding_id, session)
        if record is None:
            raise FundingNotFoundError(funding_id)
        return record

    async def find_by_funding_tx(
        self,
        deposit_address: str,
        tx_hash: str,
        exclude_id: Optional[str] = None,
        session: Optional[AsyncSession] = None
    ) -> Optional[FundingRecord]:
        """
        A settled record on ``deposit_address`` that already saw ``tx_hash``.

        One transaction may pay several deposit addresses, so the match is on
        the address and hash together. PENDING records never match.
        """
        conditions = [
            FundingRecord.deposit_address == deposit_address,
            FundingRecord.funding_tx_hash == tx_hash,
            FundingRecord.status != FundingStatus.PENDING,
        ]
        if exclude_id is not None:
            conditions.append(FundingRecord.id != exclude_id)

        async with self.db.session(session) as s:
            result = await s.execute(select(FundingRecord).where(*conditions).limit(1))
            return result.scalar_one_or_none()

    async def list_pending(
        self,
        now: Optional[datetime] = None,
        limit: int = 100,
        session: Optional[AsyncSession] = None
    ) -> List[FundingRecord]:
        """PENDING records not yet past expiry, oldest first."""
        now = now or utcnow()
        async with self.db.session(session) as s:
            result = await s.execute(
                select(FundingRecord)
                .where(
                    FundingRecord.status == FundingStatus.PENDING,
                    FundingRecord.expires_at >= now
                )
                .order_by(FundingRecord.created_at.asc(), FundingRecord.id.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def transition(
        self,
        funding_id: str,
        from_status: FundingStatus,
        to_status: FundingStatus,
        values: Optional[Dict[str, Any]] = None,
        extra_conditions: tuple = (),
        session: Optional[AsyncSession] = None
    ) -> bool:
        """
        Conditionally move a record from ``from_status`` to ``to_status``.

        Returns False when the record is not (or no longer) in ``from_status``.
        """
        if not from_status.can_transition_to(to_status):
            raise InvalidStatusTransitionError(from_status.value, to_status.value)

        async with self.db.session(session) as s:
            result = await s.execute(
                update(FundingRecord)
                .where(
                    FundingRecord.id == funding_id,
                    FundingRecord.status == from_status,
                    *extra_conditions
                )
                .values(status=to_status, **(values or {}))
                .execution_options(synchronize_session=False)
            )
            changed = result.rowcount == 1

        if changed:
            self.logger.info(
                "Funding status changed",
                funding_id=funding_id,
                from_status=from_status.value,
                to_status=to_status.value
            )
        else:
            self.logger.debug(
                "Funding transition skipped",
                funding_id=funding_id,
                from_status=from_status.value,
                to_status=to_status.value
            )
        return changed

    async def mark_confirmed(
        self,
        funding_id: str,
        funded_amount: Decimal,
        funding_tx_hash: Optional[str],
        confirmations: int,
        session: Optional[AsyncSession] = None
    ) -> bool:
        return await self.transition(
            funding_id,
            FundingStatus.PENDING,
            FundingStatus.CONFIRMED,
            values={
                "funded_amount": funded_amount,
                "funding_tx_hash": funding_tx_hash,
                "confirmations": confirmations,
                "confirmed_at": utcnow(),
            },
            session=session
        )

    async def mark_reward_sent(
        self,
        funding_id: str,
        reward_tx_hash: str,
        reward_amount: Optional[Decimal] = None,
        session: Optional[AsyncSession] = None
    ) -> bool:
        """Attach the reward hash. Only ever succeeds once per record."""
        return await self.transition(
            funding_id,
            FundingStatus.CONFIRMED,
            FundingStatus.REWARD_SENT,
            values={
                "reward_tx_hash": reward_tx_hash,
                "reward_amount": reward_amount,
                "error_message": None,
            },
            extra_conditions=(FundingRecord.reward_tx_hash.is_(None),),
            session=session
        )

    async def mark_failed(
        self,
        funding_id: str,
        error_message: str,
        session: Optional[AsyncSession] = None
    ) -> bool:
        return await self.transition(
            funding_id,
            FundingStatus.CONFIRMED,
            FundingStatus.FAILED,
            values={"error_message": error_message},
            extra_conditions=(FundingRecord.reward_tx_hash.is_(None),),
            session=session
        )

    async def record_reward_error(
        self,
        funding_id: str,
        error_message: str,
        session: Optional[AsyncSession] = None
    ) -> None:
        """Keep the last payout error on a CONFIRMED record without changing status."""
        async with self.db.session(session) as s:
            await s.execute(
                update(FundingRecord)
                .where(
                    FundingRecord.id == funding_id,
                    FundingRecord.status == FundingStatus.CONFIRMED
                )
                .values(error_message=error_message)
                .execution_options(synchronize_session=False)
            )

    async def expire(
        self,
        funding_id: str,
        now: Optional[datetime] = None,
        session: Optional[AsyncSession] = None
    ) -> bool:
        """Expire one PENDING record if it is past its expiry."""
        now = now or utcnow()
        return await self.transition(
            funding_id,
            FundingStatus.PENDING,
            FundingStatus.EXPIRED,
            values={"expired_at": now},
            extra_conditions=(FundingRecord.expires_at < now,),
            session=session
        )

    async def expire_pending(
        self,
        now: Optional[datetime] = None,
        session: Optional[AsyncSession] = None
    ) -> int:
        """Expire every PENDING record whose expiry is in the past."""
        now = now or utcnow()
        async with self.db.session(session) as s:
            result = await s.execute(
                update(FundingRecord)
                .where(
                    FundingRecord.status == FundingStatus.PENDING,
                    FundingRecord.expires_at < now
                )
                .values(status=FundingStatus.EXPIRED, expired_at=now)
                .execution_options(synchronize_session=False)
            )
            expired = result.rowcount

        if expired:
            self.logger.info("Expired pending fundings", count=expired)
        return expired

    async def update_confirmations(
        self,
        funding_id: str,
        confirmations: int,
        funding_tx_hash: Optional[str] = None,
        session: Optional[AsyncSession] = None
    ) -> None:
        """Record confirmation progress on a still PENDING record."""
        values: Dict[str, Any] = {"confirmations": confirmations}
        if funding_tx_hash:
            values["funding_tx_hash"] = funding_tx_hash

        async with self.db.session(session) as s:
            await s.execute(
                update(FundingRecord)
                .where(
                    FundingRecord.id == funding_id,
                    FundingRecord.status == FundingStatus.PENDING
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )

    async def count_by_status(self, session: Optional[AsyncSession] = None) -> Dict[str, int]:
        counts = {status.value: 0 for status in FundingStatus}
        async with self.db.session(session) as s:
            result = await s.execute(
                select(FundingRecord.status, func.count()).group_by(FundingRecord.status)
            )
            for status, count in result.all():
                counts[status.value] = count
        return counts
