from sqlalchemy import DateTime
from sqlalchemy.orm import (
    Mapped, mapped_column, declarative_mixin
)
from sqlalchemy.sql import func
from datetime import datetime


@declarative_mixin
class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


@declarative_mixin
class CreatedAtMixin:
    """Mixin for append-only ledger rows"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )
