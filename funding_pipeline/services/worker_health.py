"""
Worker heartbeat repository.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from funding_pipeline.core.database import Database
from funding_pipeline.models import WorkerHeartbeat, WorkerState, utcnow


class WorkerHealthRepository:
    """Upserts and reads worker heartbeats."""

    def __init__(self, db: Database, healthy_threshold: int = 120):
        self.db = db
        self.healthy_threshold = healthy_threshold

    async def heartbeat(
        self,
        worker_name: str,
        status: WorkerState,
        processed_count: int = 0,
        error_count: int = 0,
        extra: Optional[Dict[str, Any]] = None,
        started_at: Optional[datetime] = None,
        session: Optional[AsyncSession] = None
    ) -> None:
        async with self.db.session(session) as s:
            row = await s.get(WorkerHeartbeat, worker_name)
            now = utcnow()
            if row is None:
                row = WorkerHeartbeat(worker_name=worker_name)
                s.add(row)
            row.status = status
            row.last_heartbeat = now
            row.processed_count = processed_count
            row.error_count = error_count
            row.extra = extra
            if started_at is not None:
                row.started_at = started_at
            await s.flush()

    async def get_all(self, now: Optional[datetime] = None, session: Optional[AsyncSession] = None) -> List[Dict[str, Any]]:
        """All heartbeats with health derived from their age."""
        now = now or utcnow()
        async with self.db.session(session) as s:
            result = await s.execute(select(WorkerHeartbeat).order_by(WorkerHeartbeat.worker_name))
            rows = result.scalars().all()

        workers = []
        for row in rows:
            ago = (now - row.last_heartbeat).total_seconds()
            workers.append({
                "worker_name": row.worker_name,
                "status": row.status.value,
                "last_heartbeat": row.last_heartbeat,
                "last_heartbeat_ago": round(ago, 1),
                "is_healthy": row.status == WorkerState.RUNNING and ago <= self.healthy_threshold,
                "processed_count": row.processed_count,
                "error_count": row.error_count,
                "metadata": row.extra,
                "started_at": row.started_at,
            })
        return workers
