"""
Common Pydantic schemas for API responses and requests.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from funding_pipeline.models import utcnow


def serialize_utc(dt: datetime) -> str:
    """ISO-8601 with a Z suffix; stored timestamps are naive UTC."""
    if dt.tzinfo is None:
        return dt.isoformat() + "Z"
    return dt.isoformat()


UTCDateTime = Annotated[datetime, PlainSerializer(serialize_utc, return_type=str)]


def decimal_str(value: Optional[Decimal]) -> Optional[str]:
    """Plain decimal string without trailing zeros or exponent."""
    if value is None:
        return None
    normalized = Decimal(value).normalize()
    return format(normalized, "f")


def camelize(value: Any) -> Any:
    """Recursively convert snake_case dict keys to camelCase and values to JSON-friendly types."""
    if isinstance(value, dict):
        return {to_camel(k) if isinstance(k, str) and "_" in k else k: camelize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [camelize(v) for v in value]
    if isinstance(value, Decimal):
        return decimal_str(value)
    if isinstance(value, datetime):
        return serialize_utc(value)
    return value


class CamelModel(BaseModel):
    """Model that reads and writes camelCase keys."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class APIResponse(BaseModel):
    """Base API response model."""
    success: bool = True
    message: Optional[str] = None
    timestamp: UTCDateTime = Field(default_factory=utcnow)


class SuccessResponse(APIResponse):
    """Success response model."""
    data: Optional[Any] = None


class ErrorResponse(APIResponse):
    """Error response model."""
    success: bool = False
    error: str = "INTERNAL_SERVER_ERROR"
    details: Optional[Dict[str, Any]] = None


class HealthCheckResponse(CamelModel):
    """Health check response."""
    status: str = "healthy"
    timestamp: UTCDateTime = Field(default_factory=utcnow)
    version: str
    services: Dict[str, str]
    reward_configured: bool
    workers_running: bool


def create_success_response(data: Any = None, message: Optional[str] = None) -> SuccessResponse:
    """Create a success response with camelCase data."""
    return SuccessResponse(data=camelize(data), message=message)


def create_error_response(
    message: str,
    error: str = "INTERNAL_SERVER_ERROR",
    details: Optional[Dict[str, Any]] = None
) -> ErrorResponse:
    """Create an error response."""
    return ErrorResponse(message=message, error=error, details=details)
