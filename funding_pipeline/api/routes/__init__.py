"""API routes package."""

from . import admin, funding

__all__ = ["admin", "funding"]
