"""
Cleanup worker - expires stale fundings and reclaims old state.

Each step runs on its own; a failing step is logged and the remaining steps
still run.
"""

from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from funding_pipeline.core.config import Settings
from funding_pipeline.models import utcnow
from funding_pipeline.services.address_pool import AddressPoolService
from funding_pipeline.services.funding_repository import FundingRepository
from funding_pipeline.services.reward_log import RewardLogRepository
from funding_pipeline.services.reward_queue import RewardQueue
from funding_pipeline.services.worker_health import WorkerHealthRepository
from .base import PollingWorker


class CleanupWorker(PollingWorker):
    name = "cleanup"

    def __init__(
        self,
        settings: Settings,
        fundings: FundingRepository,
        address_pool: AddressPoolService,
        queue: RewardQueue,
        reward_logs: RewardLogRepository,
        health: Optional[WorkerHealthRepository] = None
    ):
        super().__init__(settings.cleanup_interval, health, settings.worker_shutdown_timeout)
        self.settings = settings
        self.fundings = fundings
        self.address_pool = address_pool
        self.queue = queue
        self.reward_logs = reward_logs

    async def run_cycle(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        steps: Dict[str, Callable[[], Awaitable[int]]] = {
            "expired_fundings": lambda: self.fundings.expire_pending(now),
            "pruned_logs": lambda: self.reward_logs.prune(self.settings.log_retention_days, now),
            "released_addresses": lambda: self.address_pool.release_expired_addresses(
                self.settings.address_release_cooldown_minutes, now
            ),
            "pruned_queue_entries": lambda: self.queue.prune_exhausted_failures(
                self.settings.reward_max_retries,
                self.settings.failed_queue_retention_days,
                now
            ),
            "generated_addresses": self.top_up_address_pool,
        }

        summary: Dict[str, Any] = {"errors": {}}
        for step, run in steps.items():
            try:
                summary[step] = await run()
            except Exception as e:
                summary[step] = 0
                summary["errors"][step] = str(e)
                self.logger.error("Cleanup step failed", step=step, error=str(e))

        summary["processed"] = sum(
            summary[step] for step in steps if isinstance(summary.get(step), int)
        )
        if summary["processed"]:
            self.logger.info("Cleanup completed", **{step: summary[step] for step in steps})
        return summary

    async def top_up_address_pool(self) -> int:
        """Refill each chain's unused addresses up to ADDRESS_POOL_TARGET_SIZE."""
        target = self.settings.address_pool_target_size
        if target <= 0:
            return 0

        generated = 0
        stats = await self.address_pool.get_pool_stats()
        for chain in self.address_pool.registry.chains:
            missing = target - stats.get(chain.value, {}).get("unused", 0)
            if missing <= 0:
                continue
            try:
                generated += await self.address_pool.pre_generate_addresses(chain, missing)
            except Exception as e:
                self.logger.warning("Address pool top-up failed", chain=chain.value, error=str(e))
        return generated
