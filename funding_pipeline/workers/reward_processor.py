"""
Reward processor worker - drains the reward queue.

Per entry: claim (pending -> processing), sign the reward transfer and store
its hash, nonce and raw bytes on the entry, broadcast it, then in one
transaction complete the entry and move the funding to REWARD_SENT.

An entry that already carries a signed transfer is never signed again until
that transfer is known to be unmineable (reverted, or its nonce taken by
another transaction). A transfer still waiting for its receipt puts the entry
back to pending for the next cycle.

Validation failures (below minimum, bad recipient) are permanent: the entry is
pinned at the retry ceiling and the funding becomes FAILED. Other failures
leave the funding CONFIRMED until the entry has used up its retries;
requeueing is an explicit admin action.
"""

from typing import Any, Dict, List, Optional

from funding_pipeline.core.database import Database
from funding_pipeline.core.exceptions import (
    FundingPipelineException,
    RewardTransferPendingError,
    RewardTransferRevertedError,
)
from funding_pipeline.models import RewardQueueEntry, RewardAction
from funding_pipeline.services.funding_repository import FundingRepository
from funding_pipeline.services.reward_log import RewardLogRepository
from funding_pipeline.services.reward_queue import RewardQueue
from funding_pipeline.services.reward_service import (
    PreparedReward,
    RewardService,
    RewardTransferResult,
    SubmissionState,
)
from funding_pipeline.services.worker_health import WorkerHealthRepository
from .base import PollingWorker


COMPLETED = "completed"
FAILED = "failed"
AWAITING = "awaiting"


class RewardProcessorWorker(PollingWorker):
    name = "reward_processor"

    def __init__(
        self,
        db: Database,
        queue: RewardQueue,
        fundings: FundingRepository,
        reward_service: Optional[RewardService],
        reward_logs: RewardLogRepository,
        interval: float = 15,
        batch_size: int = 5,
        max_retries: int = 3,
        health: Optional[WorkerHealthRepository] = None,
        shutdown_timeout: float = 30.0
    ):
        super().__init__(interval, health, shutdown_timeout)
        self.db = db
        self.queue = queue
        self.fundings = fundings
        self.reward_service = reward_service
        self.reward_logs = reward_logs
        self.batch_size = batch_size
        self.max_retries = max_retries

    async def run_cycle(self) -> Dict[str, Any]:
        if self.reward_service is None:
            self.logger.debug("Reward service not configured, skipping cycle")
            return {"processed": 0, "completed": 0, "failed": 0, "awaiting": 0, "reward_configured": False}

        outcomes = {COMPLETED: 0, FAILED: 0, AWAITING: 0}
        seen: List[int] = []
        for _ in range(self.batch_size):
            entry = await self.queue.get_next_pending_reward(exclude_ids=seen)
            if entry is None:
                break
            seen.append(entry.id)

            claimed = await self.queue.mark_as_processing(entry.id)
            if claimed is None:
                continue

            outcomes[await self.process_entry(claimed)] += 1

        processed = sum(outcomes.values())
        if processed:
            self.logger.info("Reward queue drained", processed=processed, **outcomes)

        stats = await self.queue.get_queue_stats()
        return {
            "processed": processed,
            "completed": outcomes[COMPLETED],
            "failed": outcomes[FAILED],
            "awaiting": outcomes[AWAITING],
            "queue": stats,
        }

    async def process_entry(self, entry: RewardQueueEntry) -> str:
        """Pay or settle one claimed entry. Returns completed, failed or awaiting."""
        if entry.submitted_tx_hash:
            return await self._settle_submission(entry)
        return await self._submit(entry)

    async def _submit(self, entry: RewardQueueEntry) -> str:
        submitted = False

        async def record_submission(prepared: PreparedReward) -> None:
            nonlocal submitted
            transfer = prepared.transfer
            async with self.db.session() as s:
                await self.queue.record_submission(
                    entry.id,
                    transfer.tx_hash,
                    transfer.nonce,
                    transfer.raw_transaction,
                    prepared.reward_amount,
                    session=s
                )
                await self.reward_logs.log(
                    entry.funding_id,
                    RewardAction.SUBMITTED,
                    queue_id=entry.id,
                    tx_hash=transfer.tx_hash,
                    reward_amount=prepared.reward_amount,
                    usd_value=prepared.usd_value,
                    session=s
                )
            submitted = True

        try:
            result = await self.reward_service.send_reward_tokens(
                entry.requester_address,
                entry.funded_amount,
                entry.chain,
                entry.funding_id,
                on_signed=record_submission
            )
        except RewardTransferPendingError as e:
            await self._await_receipt(entry, e.tx_hash)
            return AWAITING
        except RewardTransferRevertedError as e:
            await self._record_failure(entry, e, clear_submission=True)
            return FAILED
        except Exception as e:
            if submitted:
                self.logger.warning(
                    "Reward broadcast outcome unknown, keeping signed transfer",
                    funding_id=entry.funding_id,
                    queue_id=entry.id
                )
            await self._record_failure(entry, e)
            return FAILED

        await self._complete(entry, result)
        return COMPLETED

    async def _settle_submission(self, entry: RewardQueueEntry) -> str:
        tx_hash = entry.submitted_tx_hash
        try:
            check = await self.reward_service.check_submitted_transfer(
                tx_hash,
                entry.submitted_nonce,
                entry.submitted_raw_tx
            )
        except Exception as e:
            await self._record_failure(entry, e)
            return FAILED

        if check.state == SubmissionState.CONFIRMED:
            await self._complete(entry, RewardTransferResult(
                tx_hash=tx_hash,
                block_number=check.block_number,
                gas_used=check.gas_used,
                reward_amount=entry.reward_amount,
                usd_value=None,
            ))
            return COMPLETED

        if check.state == SubmissionState.REVERTED:
            await self._record_failure(entry, RewardTransferRevertedError(tx_hash), clear_submission=True)
            return FAILED

        if check.state == SubmissionState.DROPPED:
            await self.queue.clear_submission(entry.id)
            return await self._submit(entry)

        await self._await_receipt(entry, tx_hash)
        return AWAITING

    async def _complete(self, entry: RewardQueueEntry, result: RewardTransferResult) -> None:
        async with self.db.session() as s:
            await self.queue.mark_as_completed(entry.id, result.tx_hash, result.reward_amount, session=s)
            sent = await self.fundings.mark_reward_sent(
                entry.funding_id,
                result.tx_hash,
                result.reward_amount,
                session=s
            )
            await self.reward_logs.log(
                entry.funding_id,
                RewardAction.COMPLETED,
                queue_id=entry.id,
                tx_hash=result.tx_hash,
                reward_amount=result.reward_amount,
                usd_value=result.usd_value,
                gas_used=result.gas_used,
                session=s
            )

        if not sent:
            self.logger.error(
                "Reward sent but funding was not CONFIRMED",
                funding_id=entry.funding_id,
                queue_id=entry.id,
                tx_hash=result.tx_hash
            )

    async def _await_receipt(self, entry: RewardQueueEntry, tx_hash: str) -> None:
        self.logger.info(
            "Reward transfer awaiting receipt",
            funding_id=entry.funding_id,
            queue_id=entry.id,
            tx_hash=tx_hash
        )
        await self.queue.release_awaiting(entry.id, f"Awaiting receipt for reward transfer {tx_hash}")

    async def _record_failure(
        self,
        entry: RewardQueueEntry,
        error: Exception,
        clear_submission: bool = False
    ) -> None:
        message = str(error)
        retryable = not isinstance(error, FundingPipelineException) or error.retryable
        retry_count = entry.retry_count if retryable else self.max_retries

        self.logger.warning(
            "Reward payout failed",
            funding_id=entry.funding_id,
            queue_id=entry.id,
            retry_count=retry_count,
            retryable=retryable,
            error=message
        )

        async with self.db.session() as s:
            if clear_submission:
                await self.queue.clear_submission(entry.id, session=s)
            await self.queue.mark_as_failed(entry.id, message, retry_count, session=s)
            if retry_count >= self.max_retries:
                await self.fundings.mark_failed(entry.funding_id, message, session=s)
            else:
                await self.fundings.record_reward_error(entry.funding_id, message, session=s)
            await self.reward_logs.log(
                entry.funding_id,
                RewardAction.FAILED,
                queue_id=entry.id,
                error_message=message,
                session=s
            )
