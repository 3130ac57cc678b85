"""
Polling worker, worker manager and cleanup worker tests.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import update

from funding_pipeline.models import Chain, FundingStatus, RewardAction, RewardLog, WorkerState, utcnow
from funding_pipeline.workers.base import PollingWorker
from funding_pipeline.workers.chain_monitor_worker import ChainMonitorWorker
from funding_pipeline.workers.cleanup_worker import CleanupWorker
from funding_pipeline.workers.manager import WorkerManager

from conftest import create_funding, make_settings


class SlowWorker(PollingWorker):
    name = "slow"

    def __init__(self, delay: float = 0.1, fail: bool = False, **kwargs):
        super().__init__(interval=kwargs.pop("interval", 0.01), **kwargs)
        self.delay = delay
        self.fail = fail
        self.runs = 0

    async def run_cycle(self) -> Dict[str, Any]:
        self.runs += 1
        await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("cycle exploded")
        return {"processed": 1}


class TestPollingWorker:
    async def test_overlapping_cycle_is_skipped(self):
        worker = SlowWorker(delay=0.1)

        first, second = await asyncio.gather(worker.run_once(), worker.run_once())

        assert first == {"processed": 1}
        assert second == {"skipped": True}
        assert worker.runs == 1
        assert worker.skipped_cycles == 1

    async def test_cycle_errors_are_counted_not_raised(self):
        worker = SlowWorker(delay=0, fail=True)

        result = await worker.run_once()

        assert result == {"error": "cycle exploded"}
        assert worker.error_count == 1
        assert worker.last_error == "cycle exploded"
        assert not worker.is_busy

    async def test_loop_runs_until_stopped(self, health):
        worker = SlowWorker(delay=0, health=health)

        await worker.start()
        await asyncio.sleep(0.1)
        await worker.stop()

        assert worker.runs >= 2
        assert not worker.is_running
        rows = await health.get_all()
        assert rows[0]["worker_name"] == "slow"
        assert rows[0]["status"] == WorkerState.STOPPED.value
        assert rows[0]["processed_count"] == worker.processed_count

    async def test_stop_waits_for_current_cycle(self):
        worker = SlowWorker(delay=0.2, interval=10)

        await worker.start()
        await asyncio.sleep(0.05)
        assert worker.is_busy
        await worker.stop()

        assert worker.cycle_count == 1
        assert worker.last_error is None

    async def test_heartbeat_reports_health(self, health):
        worker = SlowWorker(delay=0, health=health)

        await worker.run_once()

        rows = await health.get_all()
        assert rows[0]["status"] == "running"
        assert rows[0]["is_healthy"]
        assert rows[0]["metadata"]["cycle_count"] == 1

    async def test_stale_heartbeat_is_unhealthy(self, health):
        worker = SlowWorker(delay=0, health=health)
        await worker.run_once()

        rows = await health.get_all(now=utcnow() + timedelta(minutes=10))
        assert not rows[0]["is_healthy"]
        assert rows[0]["last_heartbeat_ago"] >= 600


class TestWorkerManager:
    async def test_start_and_stop_all(self):
        first = SlowWorker(delay=0)
        second = SlowWorker(delay=0)
        second.name = "slow-2"
        manager = WorkerManager([first, second])

        await manager.start_all()
        assert manager.running
        assert all(w["running"] for w in manager.get_status()["workers"].values())

        await manager.stop_all()
        assert not manager.running
        assert not first.is_running and not second.is_running

    async def test_wait_until_stopped_returns_after_stop(self):
        manager = WorkerManager([SlowWorker(delay=0)])
        await manager.start_all()

        waiter = asyncio.create_task(manager.wait_until_stopped())
        await asyncio.sleep(0.02)
        assert not waiter.done()

        await manager.stop_all()
        await asyncio.wait_for(waiter, timeout=1)

    async def test_chain_monitor_worker_reports_checked(self, monitor, fundings, adapters):
        await create_funding(fundings, deposit_address="eth-addr-0")
        adapters[Chain.ETH].fund("eth-addr-0", "1", confirmations=1)
        worker = ChainMonitorWorker(monitor, interval=1)

        result = await worker.run_once()

        assert result["processed"] == 1
        assert result["confirmed"] == 1
        assert worker.processed_count == 1


class TestCleanupWorker:
    def make_worker(self, settings, fundings, address_pool, queue, reward_logs, **overrides):
        if overrides:
            settings = make_settings(settings.database_url, **overrides)
        return CleanupWorker(settings, fundings, address_pool, queue, reward_logs)

    async def test_expires_and_releases_after_cooldown(
        self, settings, fundings, address_pool, queue, reward_logs
    ):
        worker = self.make_worker(settings, fundings, address_pool, queue, reward_logs)
        entry = await address_pool.assign_address(Chain.ETH)
        now = utcnow()
        record = await create_funding(
            fundings, deposit_address=entry.address, expires_at=now - timedelta(minutes=1)
        )

        summary = await worker.run_cycle(now=now)
        assert summary["expired_fundings"] == 1
        assert summary["released_addresses"] == 0
        assert (await fundings.get(record.id)).status == FundingStatus.EXPIRED
        assert await address_pool.get_unused_address(Chain.ETH) is None

        summary = await worker.run_cycle(now=now + timedelta(minutes=61))
        assert summary["released_addresses"] == 1
        assert (await address_pool.get_unused_address(Chain.ETH)).address == entry.address

    async def test_never_touches_confirmed_or_rewarded(
        self, settings, fundings, address_pool, queue, reward_logs
    ):
        worker = self.make_worker(settings, fundings, address_pool, queue, reward_logs)
        past = utcnow() - timedelta(hours=2)
        confirmed = await create_funding(fundings, deposit_address="eth-addr-1", expires_at=past)
        rewarded = await create_funding(fundings, deposit_address="eth-addr-2", expires_at=past)
        await fundings.mark_confirmed(confirmed.id, Decimal("1"), "0xa", 1)
        await fundings.mark_confirmed(rewarded.id, Decimal("1"), "0xb", 1)
        await fundings.mark_reward_sent(rewarded.id, "0xreward", Decimal("2000"))

        summary = await worker.run_cycle(now=utcnow() + timedelta(days=1))

        assert summary["expired_fundings"] == 0
        assert (await fundings.get(confirmed.id)).status == FundingStatus.CONFIRMED
        assert (await fundings.get(rewarded.id)).status == FundingStatus.REWARD_SENT

    async def test_prunes_old_logs(self, settings, db, fundings, address_pool, queue, reward_logs):
        worker = self.make_worker(settings, fundings, address_pool, queue, reward_logs)
        await reward_logs.log("funding-1", RewardAction.FAILED, error_message="old")
        await reward_logs.log("funding-2", RewardAction.COMPLETED, tx_hash="0xnew")
        async with db.session() as s:
            await s.execute(
                update(RewardLog)
                .where(RewardLog.funding_id == "funding-1")
                .values(created_at=utcnow() - timedelta(days=45))
            )

        summary = await worker.run_cycle()

        assert summary["pruned_logs"] == 1
        assert await reward_logs.for_funding("funding-1") == []
        assert len(await reward_logs.for_funding("funding-2")) == 1

    async def test_failing_step_does_not_stop_others(
        self, settings, fundings, address_pool, queue, reward_logs
    ):
        worker = self.make_worker(settings, fundings, address_pool, queue, reward_logs)
        await create_funding(fundings, expires_at=utcnow() - timedelta(minutes=1))

        async def broken_prune(*args, **kwargs):
            raise RuntimeError("disk full")

        reward_logs.prune = broken_prune
        summary = await worker.run_cycle()

        assert summary["errors"] == {"pruned_logs": "disk full"}
        assert summary["expired_fundings"] == 1

    async def test_tops_up_pool_to_target(self, settings, fundings, address_pool, queue, reward_logs):
        worker = self.make_worker(
            settings, fundings, address_pool, queue, reward_logs, address_pool_target_size=3
        )
        await address_pool.pre_generate_addresses(Chain.ETH, 1)

        summary = await worker.run_cycle()

        assert summary["generated_addresses"] == 8
        stats = await address_pool.get_pool_stats()
        assert all(stats[chain.value]["unused"] == 3 for chain in Chain)
