"""
Activity Log Routes
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.deps import require_role
from app.db.dependencies import get_db
from app.schemas.syst_schemas import ActivityLogFilters, ActivityLogResponse
from app.services.system.activity_service import list_activity_logs
from app.utils.pagination import PaginatedResponse, PaginationParams, pagination_params


router = APIRouter(prefix="/activity-logs", tags=["Activity Logs"])


@router.get(
    "",
    response_model=PaginatedResponse[ActivityLogResponse],
    dependencies=[Depends(require_role("admin"))]
)
async def get_activity_logs(
    module: Optional[str] = Query(None, max_length=50, description="inventory, invoice or payments"),
    username: Optional[str] = Query(None, max_length=255),
    action: Optional[str] = Query(None, max_length=100),
    days: Optional[int] = Query(None, ge=1, le=3650),
    pagination: PaginationParams = Depends(pagination_params()),
    db: AsyncSession = Depends(get_db)
):
    """
    Operational activity, newest first

    **Permission**: admin
    """
    filters = ActivityLogFilters(module=module, username=username, action=action, days=days)
    return await list_activity_logs(db, filters, pagination)
