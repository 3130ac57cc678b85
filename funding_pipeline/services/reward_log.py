"""
Reward log repository.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from funding_pipeline.core.database import Database
from funding_pipeline.models import RewardLog, RewardAction, utcnow


class RewardLogRepository:
    """Writes and prunes payout audit rows."""

    def __init__(self, db: Database):
        self.db = db

    async def log(
        self,
        funding_id: str,
        action: RewardAction,
        queue_id: Optional[int] = None,
        tx_hash: Optional[str] = None,
        reward_amount: Optional[Decimal] = None,
        usd_value: Optional[Decimal] = None,
        gas_used: Optional[int] = None,
        error_message: Optional[str] = None,
        session: Optional[AsyncSession] = None
    ) -> None:
        async with self.db.session(session) as s:
            s.add(RewardLog(
                funding_id=funding_id,
                queue_id=queue_id,
                action=action,
                tx_hash=tx_hash,
                reward_amount=reward_amount,
                usd_value=usd_value,
                gas_used=gas_used,
                error_message=error_message,
            ))
            await s.flush()

    async def for_funding(self, funding_id: str, session: Optional[AsyncSession] = None) -> List[RewardLog]:
        async with self.db.session(session) as s:
            result = await s.execute(
                select(RewardLog)
                .where(RewardLog.funding_id == funding_id)
                .order_by(RewardLog.created_at.asc(), RewardLog.id.asc())
            )
            return list(result.scalars().all())

    async def prune(
        self,
        retention_days: int,
        now: Optional[datetime] = None,
        session: Optional[AsyncSession] = None
    ) -> int:
        """Delete log rows older than ``retention_days``."""
        cutoff = (now or utcnow()) - timedelta(days=retention_days)
        async with self.db.session(session) as s:
            result = await s.execute(
                delete(RewardLog)
                .where(RewardLog.created_at < cutoff)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount
