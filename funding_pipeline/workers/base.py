"""
Base class for fixed-interval polling workers.

A worker runs ``run_cycle`` in its own asyncio task, then waits ``interval``
seconds or until stopped. Cycles are single-flight: a cycle requested while
another is still running (for example a manual admin trigger during a
scheduled run) is skipped. Exceptions from a cycle are logged and counted;
they never end the loop.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

import structlog

from funding_pipeline.models import WorkerState, utcnow
from funding_pipeline.services.worker_health import WorkerHealthRepository


logger = structlog.get_logger(__name__)


class PollingWorker(ABC):
    """Single-flight polling loop with heartbeats."""

    name: str = "worker"

    def __init__(
        self,
        interval: float,
        health: Optional[WorkerHealthRepository] = None,
        shutdown_timeout: float = 30.0
    ):
        self.interval = interval
        self.health = health
        self.shutdown_timeout = shutdown_timeout

        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._cycle_lock = asyncio.Lock()

        self.started_at: Optional[datetime] = None
        self.last_run: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.last_result: Optional[Dict[str, Any]] = None
        self.cycle_count = 0
        self.skipped_cycles = 0
        self.processed_count = 0
        self.error_count = 0

        self.logger = logger.bind(worker=self.name)

    @abstractmethod
    async def run_cycle(self) -> Dict[str, Any]:
        """Do one unit of work. ``processed`` in the result feeds the counters."""

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_busy(self) -> bool:
        return self._cycle_lock.locked()

    async def start(self) -> None:
        if self.is_running:
            self.logger.warning("Worker already running")
            return

        self._stop_event = asyncio.Event()
        self.started_at = utcnow()
        self._task = asyncio.create_task(self._run_loop(), name=f"worker:{self.name}")
        self.logger.info("Worker started", interval=self.interval)

    async def stop(self) -> None:
        """Let the current cycle finish (up to the shutdown timeout), then stop."""
        if self._task is None:
            return

        self.logger.info("Stopping worker")
        self._stop_event.set()

        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=self.shutdown_timeout)
        except asyncio.TimeoutError:
            self.logger.warning("Worker did not stop in time, cancelling", timeout=self.shutdown_timeout)
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        self._task = None
        await self._heartbeat(WorkerState.STOPPED)
        self.logger.info("Worker stopped")

    async def run_once(self) -> Dict[str, Any]:
        """Run one cycle now unless one is already in progress."""
        if self._cycle_lock.locked():
            self.skipped_cycles += 1
            self.logger.debug("Cycle still running, skipping")
            return {"skipped": True}

        state = WorkerState.RUNNING
        async with self._cycle_lock:
            try:
                result = await self.run_cycle()
                self.processed_count += int(result.get("processed", 0))
                self.last_result = result
                self.last_error = None
            except Exception as e:
                state = WorkerState.ERROR
                self.error_count += 1
                self.last_error = str(e)
                self.logger.error("Worker cycle failed", error=str(e), exc_info=True)
                result = {"error": str(e)}
            finally:
                self.cycle_count += 1
                self.last_run = utcnow()

        await self._heartbeat(state)
        return result

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def _heartbeat(self, state: WorkerState) -> None:
        if self.health is None:
            return
        try:
            await self.health.heartbeat(
                self.name,
                state,
                processed_count=self.processed_count,
                error_count=self.error_count,
                extra=self.heartbeat_metadata(),
                started_at=self.started_at,
            )
        except Exception as e:
            self.logger.warning("Failed to record heartbeat", error=str(e))

    def heartbeat_metadata(self) -> Dict[str, Any]:
        return {
            "cycle_count": self.cycle_count,
            "skipped_cycles": self.skipped_cycles,
            "last_error": self.last_error,
        }

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "running": self.is_running,
            "busy": self.is_busy,
            "interval": self.interval,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "cycle_count": self.cycle_count,
            "skipped_cycles": self.skipped_cycles,
            "processed_count": self.processed_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }
