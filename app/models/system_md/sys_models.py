from app.db.base import Base
from app.models.db_types import INET, JSONB
from sqlalchemy.sql import func
from sqlalchemy import (
    String, Integer, DateTime, Index
)
from sqlalchemy.orm import Mapped, mapped_column
from typing import Optional
from datetime import datetime


class ActivityLog(Base):
    """
    Operational activity trail for inventory and billing actions.
    Written after the business change commits; a failed write never
    fails the request.
    """
    __tablename__ = 'activity_logs'

    log_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    action: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="CREATE_ITEM, RECEIVE_DELIVERY, RECORD_PAYMENT, ..."
    )

    module: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="inventory, billing, payments"
    )

    username: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    ip_address: Mapped[Optional[str]] = mapped_column(INET)

    details: Mapped[Optional[dict]] = mapped_column(JSONB)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )

    __table_args__ = (
        Index('idx_activity_module_date', 'module', 'created_at'),
    )


class AuditLog(Base):
    """
    Financial audit trail.
    Immutable - written in the same transaction as the change it records.
    """
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    entity_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="invoice, payment, installment"
    )

    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)

    action: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="adjustment_discount, payment_recorded, ..."
    )

    user_id: Mapped[Optional[str]] = mapped_column(String(255), index=True)

    # { before: {...}, after: {...} } or free-form detail
    changes: Mapped[Optional[dict]] = mapped_column(JSONB)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
    )
