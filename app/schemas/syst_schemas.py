from app.schemas.base_schemas import BaseSchema
from pydantic import Field
from typing import Optional, Dict, Any
from datetime import datetime


class ActivityLogResponse(BaseSchema):
    """Single activity log entry"""
    log_id: int
    action: str
    module: str
    username: Optional[str] = None
    ip_address: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime


class ActivityLogFilters(BaseSchema):
    """Filters for the activity log listing"""
    module: Optional[str] = Field(None, max_length=50)
    username: Optional[str] = Field(None, max_length=255)
    action: Optional[str] = Field(None, max_length=100)
    days: Optional[int] = Field(None, ge=1, le=3650)


class AuditLogResponse(BaseSchema):
    id: int
    entity_type: str
    entity_id: int
    action: str
    user_id: Optional[str] = None
    changes: Optional[Dict[str, Any]] = None
    created_at: datetime
