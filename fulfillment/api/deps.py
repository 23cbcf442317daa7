"""
API Dependencies
Common dependencies for API endpoints
"""

from typing import Optional
from fastapi import Header, HTTPException, Query, status

from fulfillment.core.config import settings
from fulfillment.core.database import get_db  # noqa: F401  re-exported for routers


async def get_actor(
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id", max_length=100)
) -> Optional[str]:
    """
    Identity of the caller as supplied by the gateway.
    Used only to stamp created_by / assigned_to / performed_by.
    """
    return x_actor_id or None


async def require_actor(
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id", max_length=100)
) -> str:
    if not x_actor_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Actor-Id header is required"
        )
    return x_actor_id


class Pagination:
    """page / page_size query parameters"""

    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number (1-based)"),
        page_size: int = Query(50, ge=1, le=settings.MAX_PAGE_SIZE, description="Items per page"),
    ):
        self.page = page
        self.page_size = page_size

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.page_size
