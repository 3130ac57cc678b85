"""
Reward processor worker tests, including the end-to-end deposit flow.
"""

from decimal import Decimal

import pytest

from funding_pipeline.core.exceptions import RewardTransferError
from funding_pipeline.models import Chain, FundingStatus, RewardAction, RewardQueueStatus
from funding_pipeline.services.deposit_service import DepositService
from funding_pipeline.services.reward_service import RewardService
from funding_pipeline.workers.reward_processor import RewardProcessorWorker

from conftest import REQUESTER, FakeTreasury, create_funding


@pytest.fixture
def processor(db, queue, fundings, reward_service, reward_logs, health):
    return RewardProcessorWorker(
        db, queue, fundings, reward_service, reward_logs,
        interval=1, batch_size=5, max_retries=3, health=health
    )


async def confirmed_funding(fundings, monitor, adapters, amount="1", address="eth-addr-0"):
    record = await create_funding(fundings, deposit_address=address)
    adapters[Chain.ETH].fund(address, amount, confirmations=1)
    await monitor.check_pending_fundings()
    return record


class TestRewardProcessor:
    async def test_end_to_end_eth_deposit(
        self, settings, db, address_pool, fundings, monitor, queue, adapters,
        processor, treasury, reward_logs
    ):
        deposits = DepositService(settings, db, address_pool, fundings, monitor)

        record = await deposits.request_deposit(REQUESTER.upper().replace("0X", "0x"), "eth")
        assert record.status == FundingStatus.PENDING
        assert record.min_confirmations == 1
        assert record.requester_address == REQUESTER

        adapters[Chain.ETH].fund(record.deposit_address, "50", confirmations=1, tx_hash="0xfunding")
        summary = await monitor.check_pending_fundings()
        assert summary["confirmed"] == 1
        assert (await queue.get_queue_stats())["total"] == 1

        result = await processor.run_once()
        assert result["completed"] == 1

        stored = await fundings.get(record.id)
        assert stored.status == FundingStatus.REWARD_SENT
        assert stored.reward_tx_hash == "0xreward1"
        # 50 ETH at 2000 USD
        assert stored.reward_amount == Decimal("100000")

        entry = await queue.get_by_funding(record.id)
        assert entry.status == RewardQueueStatus.COMPLETED
        assert len(treasury.transfers) == 1

        logs = await reward_logs.for_funding(record.id)
        assert [log.action for log in logs] == [RewardAction.SUBMITTED, RewardAction.COMPLETED]
        assert all(log.tx_hash == "0xreward1" for log in logs)

    async def test_reward_paid_at_most_once(self, fundings, monitor, adapters, processor, treasury):
        await confirmed_funding(fundings, monitor, adapters)

        await processor.run_once()
        await processor.run_once()
        await monitor.check_pending_fundings()
        await processor.run_once()

        assert len(treasury.transfers) == 1

    async def test_insufficient_balance_keeps_funding_confirmed(
        self, settings, db, queue, fundings, monitor, adapters, price_feed, reward_logs
    ):
        treasury = FakeTreasury(balance_raw=0)
        service = RewardService(settings, price_feed, treasury)
        processor = RewardProcessorWorker(db, queue, fundings, service, reward_logs, max_retries=3)
        record = await confirmed_funding(fundings, monitor, adapters)

        result = await processor.run_once()
        assert result["failed"] == 1

        entry = await queue.get_by_funding(record.id)
        assert entry.status == RewardQueueStatus.FAILED
        assert "Insufficient treasury balance" in entry.error_message
        assert entry.retry_count == 0

        stored = await fundings.get(record.id)
        assert stored.status == FundingStatus.CONFIRMED
        assert stored.error_message == entry.error_message
        assert [e.id for e in await queue.get_failed_rewards(3)] == [entry.id]

        for _ in range(3):
            assert await queue.retry_failed_reward(entry.id, max_retries=3)
            await processor.run_once()

        assert await queue.get_failed_rewards(3) == []
        assert (await fundings.get(record.id)).status == FundingStatus.FAILED
        assert treasury.transfers == []

    async def test_below_minimum_fails_permanently(self, fundings, monitor, adapters, processor, queue):
        # 0.001 ETH at 2000 USD = 2 USD
        record = await confirmed_funding(fundings, monitor, adapters, amount="0.001")

        await processor.run_once()

        entry = await queue.get_by_funding(record.id)
        assert entry.status == RewardQueueStatus.FAILED
        assert entry.retry_count == 3
        assert await queue.get_failed_rewards(3) == []
        assert (await fundings.get(record.id)).status == FundingStatus.FAILED

    async def test_batch_size_limits_cycle(self, fundings, monitor, adapters, processor, queue):
        processor.batch_size = 2
        for i in range(3):
            await create_funding(fundings, deposit_address=f"eth-addr-{i}")
            adapters[Chain.ETH].fund(f"eth-addr-{i}", "1", confirmations=1)
        await monitor.check_pending_fundings()

        first = await processor.run_once()
        second = await processor.run_once()

        assert first["processed"] == 2
        assert second["processed"] == 1
        assert second["queue"]["completed"]["count"] == 3

    async def test_unconfigured_reward_service_is_a_noop(self, db, queue, fundings, reward_logs):
        processor = RewardProcessorWorker(db, queue, fundings, None, reward_logs)

        result = await processor.run_once()

        assert result["processed"] == 0
        assert result["reward_configured"] is False

    async def test_failure_before_signing_can_be_retried(
        self, fundings, monitor, adapters, processor, queue, treasury
    ):
        record = await confirmed_funding(fundings, monitor, adapters)
        treasury.fail_with = RewardTransferError("Gas estimation failed")

        await processor.run_once()
        entry = await queue.get_by_funding(record.id)
        assert entry.status == RewardQueueStatus.FAILED
        assert entry.submitted_tx_hash is None

        treasury.fail_with = None
        assert await queue.retry_failed_reward(entry.id, max_retries=3)
        await processor.run_once()

        stored = await fundings.get(record.id)
        assert stored.status == FundingStatus.REWARD_SENT
        assert stored.error_message is None
        assert (await queue.get(entry.id)).retry_count == 1
        assert len(treasury.transfers) == 1


class TestSubmittedTransfers:
    async def test_missing_receipt_waits_without_resending(
        self, fundings, monitor, adapters, processor, queue, treasury
    ):
        record = await confirmed_funding(fundings, monitor, adapters)
        treasury.hold_receipts = True

        first = await processor.run_once()
        assert first["awaiting"] == 1
        assert first["failed"] == 0

        entry = await queue.get_by_funding(record.id)
        assert entry.status == RewardQueueStatus.PENDING
        assert entry.submitted_tx_hash == "0xreward1"
        assert entry.submitted_nonce == 0
        assert entry.reward_amount == Decimal("2000")
        assert (await fundings.get(record.id)).status == FundingStatus.CONFIRMED

        second = await processor.run_once()
        assert second["awaiting"] == 1
        assert len(treasury.signed) == 1
        assert len(treasury.transfers) == 1

        treasury.mine("0xreward1")
        third = await processor.run_once()

        assert third["completed"] == 1
        stored = await fundings.get(record.id)
        assert stored.status == FundingStatus.REWARD_SENT
        assert stored.reward_tx_hash == "0xreward1"
        assert stored.reward_amount == Decimal("2000")
        assert len(treasury.transfers) == 1

    async def test_unknown_broadcast_outcome_retry_sends_same_transfer(
        self, fundings, monitor, adapters, processor, queue, treasury, reward_logs
    ):
        record = await confirmed_funding(fundings, monitor, adapters)
        treasury.broadcast_error = RewardTransferError("Failed to submit reward transfer: connection reset")

        await processor.run_once()
        entry = await queue.get_by_funding(record.id)
        assert entry.status == RewardQueueStatus.FAILED
        assert entry.submitted_tx_hash == "0xreward1"
        assert (await fundings.get(record.id)).status == FundingStatus.CONFIRMED

        treasury.broadcast_error = None
        assert await queue.retry_failed_reward(entry.id, max_retries=3)
        await processor.run_once()
        await processor.run_once()

        stored = await fundings.get(record.id)
        assert stored.status == FundingStatus.REWARD_SENT
        assert stored.reward_tx_hash == "0xreward1"
        assert len(treasury.signed) == 1
        assert len(treasury.transfers) == 1

        actions = [log.action for log in await reward_logs.for_funding(record.id)]
        assert actions == [RewardAction.SUBMITTED, RewardAction.FAILED, RewardAction.COMPLETED]

    async def test_reverted_transfer_is_signed_again_after_retry(
        self, fundings, monitor, adapters, processor, queue, treasury
    ):
        record = await confirmed_funding(fundings, monitor, adapters)
        treasury.hold_receipts = True
        await processor.run_once()

        treasury.mine("0xreward1", status=0)
        result = await processor.run_once()
        assert result["failed"] == 1

        entry = await queue.get_by_funding(record.id)
        assert entry.status == RewardQueueStatus.FAILED
        assert entry.submitted_tx_hash is None
        assert "reverted" in entry.error_message

        treasury.hold_receipts = False
        assert await queue.retry_failed_reward(entry.id, max_retries=3)
        await processor.run_once()

        stored = await fundings.get(record.id)
        assert stored.status == FundingStatus.REWARD_SENT
        assert stored.reward_tx_hash == "0xreward2"
        assert [r["status"] for r in treasury.receipts.values()] == [0, 1]

    async def test_dropped_transfer_is_replaced(self, fundings, monitor, adapters, processor, queue, treasury):
        record = await confirmed_funding(fundings, monitor, adapters)
        treasury.hold_receipts = True
        await processor.run_once()

        treasury.drop("0xreward1")
        treasury.hold_receipts = False
        result = await processor.run_once()

        assert result["completed"] == 1
        stored = await fundings.get(record.id)
        assert stored.reward_tx_hash == "0xreward2"
        assert list(treasury.receipts) == ["0xreward2"]
        assert (await queue.get_by_funding(record.id)).retry_count == 0

    async def test_awaiting_entry_does_not_block_others(
        self, fundings, monitor, adapters, processor, queue, treasury
    ):
        await confirmed_funding(fundings, monitor, adapters, address="eth-addr-0")
        treasury.hold_receipts = True
        await processor.run_once()

        await confirmed_funding(fundings, monitor, adapters, address="eth-addr-1")
        treasury.hold_receipts = False
        result = await processor.run_once()

        assert result["processed"] == 2
        assert result["awaiting"] == 1
        assert result["completed"] == 1
