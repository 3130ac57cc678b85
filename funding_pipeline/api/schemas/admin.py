"""
Schemas for admin endpoints.
"""

from pydantic import Field

from .common import CamelModel


class PreGenerateRequest(CamelModel):
    chain: str = Field(min_length=1, max_length=16)
    count: int = Field(default=10, ge=1, le=1000)
