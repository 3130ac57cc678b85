"""
Admin routes for operators.
Manual worker triggers, reward retries, pool administration and diagnostics.
"""

import asyncio
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query

import structlog

from funding_pipeline.api.dependencies import get_container, get_reward_service
from funding_pipeline.api.schemas.admin import PreGenerateRequest
from funding_pipeline.api.schemas.common import SuccessResponse, create_success_response
from funding_pipeline.container import ServiceContainer
from funding_pipeline.core.exceptions import ConfigurationError
from funding_pipeline.services.deposit_service import DepositService
from funding_pipeline.services.reward_service import RewardService


logger = structlog.get_logger(__name__)

router = APIRouter()

RETRY_BATCH_SIZE = 100


@router.post(
    "/batch-check-fundings",
    response_model=SuccessResponse,
    summary="Run Chain Monitor",
    description="Check all pending fundings now"
)
async def batch_check_fundings(container: ServiceContainer = Depends(get_container)):
    result = await container.chain_monitor_worker.run_once()
    if result.get("skipped"):
        return create_success_response(
            data={"skipped": True},
            message="Chain monitor cycle already in progress"
        )
    if "error" in result:
        return create_success_response(data=result, message="Chain monitor cycle failed")

    return create_success_response(
        data={
            "checked": result["checked"],
            "confirmed": result["confirmed"],
            "errors": result["errors"],
            "results": result["results"],
        },
        message=f"Checked {result['checked']} pending fundings"
    )


@router.post(
    "/process-reward-queue",
    response_model=SuccessResponse,
    summary="Run Reward Processor",
    description="Process pending rewards now"
)
async def process_reward_queue(container: ServiceContainer = Depends(get_container)):
    if container.reward_service is None:
        raise ConfigurationError("Reward token is not configured")

    result = await container.reward_processor.run_once()
    if result.get("skipped"):
        return create_success_response(
            data={"skipped": True},
            message="Reward processor cycle already in progress"
        )
    return create_success_response(data=result)


@router.post(
    "/retry-failed-rewards",
    response_model=SuccessResponse,
    summary="Retry Failed Rewards",
    description="Requeue failed rewards that are still under the retry ceiling"
)
async def retry_failed_rewards(container: ServiceContainer = Depends(get_container)):
    max_retries = container.settings.reward_max_retries
    retried = []

    while True:
        failed = await container.reward_queue.get_failed_rewards(
            max_retries=max_retries, limit=RETRY_BATCH_SIZE
        )
        batch = []
        for entry in failed:
            if await container.reward_queue.retry_failed_reward(entry.id, max_retries=max_retries):
                batch.append(entry.id)
        retried.extend(batch)
        if len(failed) < RETRY_BATCH_SIZE or not batch:
            break

    logger.info("Failed rewards requeued", count=len(retried))
    return create_success_response(
        data={"retried": len(retried), "queue_ids": retried},
        message=f"Requeued {len(retried)} failed rewards"
    )


@router.get(
    "/reward-info",
    response_model=SuccessResponse,
    summary="Reward Token Info",
    description="Token metadata, treasury balance and queue statistics"
)
async def reward_info(container: ServiceContainer = Depends(get_container)):
    data = {
        "reward_configured": container.reward_service is not None,
        "queue": await container.reward_queue.get_queue_stats(),
    }
    if container.reward_service is not None:
        data["token"] = await container.reward_service.get_token_info()
    return create_success_response(data=data)


@router.get(
    "/reward-estimate",
    response_model=SuccessResponse,
    summary="Estimate Reward",
    description="Reward amount and gas cost for a hypothetical funding"
)
async def reward_estimate(
    amount: Decimal = Query(..., gt=0),
    chain: str = Query(...),
    reward_service: RewardService = Depends(get_reward_service)
):
    chain_enum = DepositService.parse_chain(chain)
    estimate = await reward_service.estimate_reward_cost(amount, chain_enum)
    return create_success_response(data={"chain": chain_enum.value, **estimate})


@router.get(
    "/worker-status",
    response_model=SuccessResponse,
    summary="Worker Status",
    description="Worker heartbeats and in-process worker state"
)
async def worker_status(container: ServiceContainer = Depends(get_container)):
    heartbeats = await container.worker_health.get_all()
    healthy = sum(1 for worker in heartbeats if worker["is_healthy"])
    return create_success_response(
        data={
            "workers": heartbeats,
            "summary": {
                "total": len(heartbeats),
                "healthy": healthy,
                "unhealthy": len(heartbeats) - healthy,
            },
            "manager": container.workers.get_status(),
        }
    )


@router.get(
    "/chain-status",
    response_model=SuccessResponse,
    summary="Chain Status",
    description="Connectivity and height of one or all chain adapters"
)
async def chain_status(
    chain: Optional[str] = Query(None),
    container: ServiceContainer = Depends(get_container)
):
    if chain:
        adapter = container.registry.get(DepositService.parse_chain(chain))
        return create_success_response(data=await adapter.get_chain_status())

    statuses = await asyncio.gather(
        *(container.registry.get(c).get_chain_status() for c in container.registry.chains)
    )
    return create_success_response(data={"chains": list(statuses)})


@router.post(
    "/pre-generate-addresses",
    response_model=SuccessResponse,
    summary="Pre-generate Addresses",
    description="Derive and store unused deposit addresses"
)
async def pre_generate_addresses(
    body: PreGenerateRequest,
    container: ServiceContainer = Depends(get_container)
):
    chain_enum = DepositService.parse_chain(body.chain)
    generated = await container.address_pool.pre_generate_addresses(chain_enum, body.count)
    stats = await container.address_pool.get_pool_stats()
    return create_success_response(
        data={
            "chain": chain_enum.value,
            "generated": generated,
            "pool": stats.get(chain_enum.value),
        },
        message=f"Generated {generated} {chain_enum.value} addresses"
    )


@router.get(
    "/address-pool",
    response_model=SuccessResponse,
    summary="Address Pool Stats",
    description="Total, unused and used deposit addresses per chain"
)
async def address_pool_stats(container: ServiceContainer = Depends(get_container)):
    return create_success_response(data=await container.address_pool.get_pool_stats())


@router.get(
    "/reward-transfer/{tx_hash}",
    response_model=SuccessResponse,
    summary="Validate Reward Transfer",
    description="Check that a transaction is a successful reward token transfer"
)
async def validate_reward_transfer(
    tx_hash: str,
    reward_service: RewardService = Depends(get_reward_service)
):
    return create_success_response(data=await reward_service.validate_reward_transfer(tx_hash))
