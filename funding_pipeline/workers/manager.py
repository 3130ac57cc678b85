"""
Worker manager - starts and stops the polling workers as a unit.
"""

import asyncio
import signal
from typing import Any, Dict, List, Optional

import structlog

from .base import PollingWorker


logger = structlog.get_logger(__name__)


class WorkerManager:
    """Owns the lifecycle of a set of polling workers."""

    def __init__(self, workers: List[PollingWorker]):
        self.workers: Dict[str, PollingWorker] = {worker.name: worker for worker in workers}
        self.running = False
        self._shutdown_event: Optional[asyncio.Event] = None

    def get(self, name: str) -> PollingWorker:
        return self.workers[name]

    async def start_all(self) -> None:
        if self.running:
            logger.warning("Workers already running")
            return

        logger.info("Starting workers", workers=list(self.workers))
        self._shutdown_event = asyncio.Event()
        for worker in self.workers.values():
            await worker.start()
        self.running = True

    async def stop_all(self) -> None:
        """Stop every worker; each finishes its current cycle first."""
        if not self.running:
            return

        logger.info("Stopping workers")
        results = await asyncio.gather(
            *(worker.stop() for worker in self.workers.values()),
            return_exceptions=True
        )
        for name, result in zip(self.workers, results):
            if isinstance(result, Exception):
                logger.error("Worker failed to stop cleanly", worker=name, error=str(result))

        self.running = False
        if self._shutdown_event is not None:
            self._shutdown_event.set()
        logger.info("All workers stopped")

    def install_signal_handlers(self) -> None:
        """Stop all workers on SIGINT / SIGTERM."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except NotImplementedError:
                # Windows event loops
                signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(self._on_signal, s))

    def _on_signal(self, sig) -> None:
        logger.info("Shutdown signal received", signal=signal.Signals(sig).name)
        asyncio.ensure_future(self.stop_all())

    async def wait_until_stopped(self) -> None:
        if not self.running or self._shutdown_event is None:
            return
        await self._shutdown_event.wait()

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "workers": {name: worker.get_status() for name, worker in self.workers.items()},
        }
