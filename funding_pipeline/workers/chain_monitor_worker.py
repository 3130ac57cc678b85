"""
Chain monitor worker - confirms pending fundings every CHAIN_MONITOR_INTERVAL.
"""

from typing import Any, Dict, Optional

from funding_pipeline.services.chain_monitor import ChainMonitor
from funding_pipeline.services.worker_health import WorkerHealthRepository
from .base import PollingWorker


class ChainMonitorWorker(PollingWorker):
    name = "chain_monitor"

    def __init__(
        self,
        monitor: ChainMonitor,
        interval: float = 30,
        health: Optional[WorkerHealthRepository] = None,
        shutdown_timeout: float = 30.0
    ):
        super().__init__(interval, health, shutdown_timeout)
        self.monitor = monitor

    async def run_cycle(self) -> Dict[str, Any]:
        summary = await self.monitor.check_pending_fundings()
        summary["processed"] = summary["checked"]
        return summary
