from decimal import Decimal
from typing_extensions import Annotated
from pydantic import (
    BaseModel, Field, ConfigDict, PlainSerializer
)
from typing import Any, Dict, Generic, List, Optional, TypeAlias, TypeVar
from datetime import datetime, timezone


T = TypeVar('T')

# JSON carries money as numbers, not strings
_as_number = PlainSerializer(float, return_type=float, when_used="json")

Money: TypeAlias = Annotated[
    Decimal,
    Field(max_digits=12, decimal_places=2, ge=0),
    _as_number
]

PositiveMoney: TypeAlias = Annotated[
    Decimal,
    Field(max_digits=12, decimal_places=2, gt=0),
    _as_number
]

# Output-only amounts (stored totals, computed balances)
Amount: TypeAlias = Annotated[Decimal, _as_number]


class BaseSchema(BaseModel):
    """Base schema with common configuration"""
    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        validate_assignment=True,
        str_strip_whitespace=True,
        json_schema_extra={
            "examples": []
        }
    )


class TimestampSchema(BaseSchema):
    """Mixin for timestamp fields"""
    created_at: datetime
    updated_at: datetime


# ============================================
# Response Envelopes
# ============================================

class APIResponse(BaseModel, Generic[T]):
    """Single-object envelope"""
    success: bool = True
    data: T
    message: Optional[str] = None


class MessageResponse(BaseModel):
    """Envelope for writes that return nothing but a message"""
    success: bool = True
    message: str


# ============================================
# Error Response Schemas
# ============================================

class ErrorDetail(BaseSchema):
    """Detailed error information"""
    field: Optional[str] = None
    message: str
    type: str


class ErrorResponse(BaseModel):
    """Standard error response"""
    success: bool = False
    message: str = Field(..., description="Human-readable error message")
    errors: Optional[List[ErrorDetail]] = Field(
        None,
        description="Validation failures, one per field"
    )
    request_id: Optional[str] = Field(
        None,
        description="Request ID for tracking"
    )


# ============================================
# Health Check Schema
# ============================================

class HealthCheckResponse(BaseSchema):
    """System health check"""
    status: str = Field(..., pattern="^(healthy|degraded|unhealthy)$")
    version: str
    database: str = Field(..., pattern="^(connected|disconnected)$")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    checks: Dict[str, Any] = Field(default_factory=dict)
