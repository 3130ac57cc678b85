"""
API dependencies for FastAPI endpoints.
"""

import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

import structlog

from funding_pipeline.container import ServiceContainer
from funding_pipeline.core.exceptions import ConfigurationError
from funding_pipeline.services.reward_service import RewardService


logger = structlog.get_logger(__name__)

admin_auth_scheme = HTTPBearer(auto_error=False)


def get_container(request: Request) -> ServiceContainer:
    """The process service container set up by the app lifespan."""
    return request.app.state.container


def get_reward_service(container: ServiceContainer = Depends(get_container)) -> RewardService:
    if container.reward_service is None:
        raise ConfigurationError("Reward token is not configured")
    return container.reward_service


async def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(admin_auth_scheme),
    container: ServiceContainer = Depends(get_container)
) -> None:
    """
    Bearer ADMIN_API_KEY check for admin routes.

    Open when no admin key is configured.
    """
    api_key = container.settings.admin_api_key
    if not api_key:
        return

    token = credentials.credentials.strip() if credentials else ""
    if not token or not secrets.compare_digest(token, api_key):
        logger.warning(
            "Admin authentication failed",
            token_preview=token[:4] + "..." if len(token) > 4 else token
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "UNAUTHORIZED",
                "message": "Admin authentication required"
            },
            headers={"WWW-Authenticate": "Bearer"}
        )
