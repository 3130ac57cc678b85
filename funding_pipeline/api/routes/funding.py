"""
Public deposit routes.
Handles deposit address requests, status polling and the health probe.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from fastapi.responses import JSONResponse

import structlog

from funding_pipeline.api.dependencies import get_container
from funding_pipeline.api.schemas.common import (
    HealthCheckResponse, SuccessResponse, create_success_response
)
from funding_pipeline.api.schemas.funding import (
    DepositRequest, DepositResponse, DepositStatusResponse
)
from funding_pipeline.container import ServiceContainer
from funding_pipeline.core.exceptions import ValidationError
from funding_pipeline.models import FundingRecord


logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post(
    "/request-deposit",
    response_model=SuccessResponse,
    summary="Request Deposit Address",
    description="Assign a deposit address on the requested chain and open a pending funding"
)
async def request_deposit(
    body: DepositRequest,
    container: ServiceContainer = Depends(get_container)
):
    record = await container.deposits.request_deposit(body.user_address, body.chain)
    response = DepositResponse.from_record(record)
    return create_success_response(
        data=response.model_dump(mode="json"),
        message="Deposit address assigned"
    )


@router.get(
    "/check-status",
    response_model=SuccessResponse,
    summary="Check Deposit Status",
    description="Current state of a funding; pending fundings are checked on-chain immediately"
)
async def check_status(
    background_tasks: BackgroundTasks,
    deposit_id: Optional[str] = Query(None, alias="depositId"),
    container: ServiceContainer = Depends(get_container)
):
    """
    Status of one funding.

    When this request is the one that confirms the funding, a reward
    processor cycle is scheduled to run right after the response.
    """
    if not deposit_id:
        raise ValidationError("depositId is required", details={"field": "depositId"})

    async def schedule_reward(record: FundingRecord) -> None:
        logger.info("Funding confirmed on status check, scheduling reward", funding_id=record.id)
        background_tasks.add_task(container.reward_processor.run_once)

    deposit_status = await container.deposits.check_status(deposit_id, on_confirmed=schedule_reward)
    response = DepositStatusResponse.from_status(deposit_status)
    return create_success_response(data=response.model_dump(mode="json"))


@router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health Check",
    description="Database connectivity and worker state"
)
async def health_check(container: ServiceContainer = Depends(get_container)):
    db_healthy = await container.db.health_check()
    response = HealthCheckResponse(
        status="healthy" if db_healthy else "unhealthy",
        version=container.settings.app_version,
        services={
            "database": "healthy" if db_healthy else "unhealthy",
            "chains": ",".join(chain.value for chain in container.registry.chains),
        },
        reward_configured=container.reward_service is not None,
        workers_running=container.workers.running,
    )

    if not db_healthy:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json", by_alias=True)
        )
    return response
