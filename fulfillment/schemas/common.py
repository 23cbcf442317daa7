"""
Fulfillment Common Schemas
Shared Pydantic models for common API structures
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Generic, List, Optional, TypeVar

# Generic type for paginated responses
T = TypeVar('T')


class PaginatedResponse(BaseModel, Generic[T]):
    """
    Generic paginated response model

    Used for all list endpoints that support pagination
    """
    items: List[T] = Field(..., description="List of items for current page")
    total: int = Field(..., description="Total number of items across all pages")
    page: int = Field(..., description="Current page number (1-based)")
    page_size: int = Field(..., description="Number of items per page")
    total_pages: int = Field(..., description="Total number of pages")
    has_next: bool = Field(..., description="Whether there is a next page")
    has_previous: bool = Field(..., description="Whether there is a previous page")

    @classmethod
    def build(cls, items: List[Any], total: int, page: int, page_size: int):
        total_pages = (total + page_size - 1) // page_size if page_size else 0
        return cls(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_previous=page > 1
        )


class ErrorResponse(BaseModel):
    """
    Standard error response model

    Used for all API error responses
    """
    error: str = Field(..., description="Error type or category")
    detail: str = Field(..., description="Human-readable error message")
    type: str = Field(..., description="Exception class name")
    retryable: bool = Field(False, description="Whether the request may be retried as-is")
    context: Optional[Dict[str, Any]] = Field(None, description="Identifiers involved in the error")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "error": "invalid_state",
            "detail": "Allocation ALLOC-00007 is RELEASED, only ACTIVE allocations can be released",
            "type": "InvalidStateError",
            "retryable": False,
            "context": {"allocation_id": 7, "status": "RELEASED"}
        }
    })


class ReasonRequest(BaseModel):
    """Body for cancel and release operations"""
    reason: Optional[str] = Field(None, max_length=500)
