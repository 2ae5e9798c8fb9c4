"""
Activity and audit logging
"""
import logging
from datetime import datetime, timezone, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.deps import RequestContext
from app.models.system_md.sys_models import ActivityLog, AuditLog
from app.schemas.syst_schemas import ActivityLogFilters, ActivityLogResponse
from app.utils.pagination import Paginator, PaginationParams, PaginatedResponse

logger = logging.getLogger(__name__)
settings = get_settings()


async def log_activity(
    db: AsyncSession,
    action: str,
    module: str,
    username: Optional[str] = None,
    ip_address: Optional[str] = None,
    details: Optional[dict] = None
) -> None:
    """
    Record an operational activity entry.

    Called after the business change has been committed. Failures are
    logged and swallowed so the caller's response is unaffected.
    """
    if not settings.ACTIVITY_LOG_ENABLED:
        return

    try:
        async with db.begin_nested():
            db.add(ActivityLog(
                action=action,
                module=module,
                username=username,
                ip_address=ip_address,
                details=details or {},
                created_at=datetime.now(timezone.utc)
            ))
        await db.commit()
    except Exception:
        logger.exception(f"Failed to write activity log {module}/{action}")


async def log_request_activity(
    db: AsyncSession,
    ctx: RequestContext,
    action: str,
    module: str,
    details: Optional[dict] = None
) -> None:
    """log_activity with user and IP taken from the request context"""
    payload = {"endpoint": ctx.endpoint}
    payload.update(details or {})
    await log_activity(
        db,
        action=action,
        module=module,
        username=ctx.username,
        ip_address=ctx.ip_address,
        details=payload
    )


def create_audit_log(
    db: AsyncSession,
    entity_type: str,
    entity_id: int,
    action: str,
    user_id: Optional[str] = None,
    changes: Optional[dict] = None
) -> AuditLog:
    """Stage an audit row in the caller's transaction"""
    log = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        user_id=user_id,
        changes=changes or {},
        created_at=datetime.now(timezone.utc)
    )
    db.add(log)
    return log


async def list_activity_logs(
    db: AsyncSession,
    filters: ActivityLogFilters,
    pagination: PaginationParams
) -> PaginatedResponse[ActivityLogResponse]:
    query = select(ActivityLog)

    if filters.module:
        query = query.where(ActivityLog.module == filters.module)
    if filters.username:
        query = query.where(ActivityLog.username.ilike(f"%{filters.username}%"))
    if filters.action:
        query = query.where(ActivityLog.action == filters.action)
    if filters.days:
        since = datetime.now(timezone.utc) - timedelta(days=filters.days)
        query = query.where(ActivityLog.created_at >= since)

    query = query.order_by(ActivityLog.created_at.desc(), ActivityLog.log_id.desc())

    return await Paginator(db).paginate(query, pagination, ActivityLogResponse)
