from typing import Any
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from app.core.config import get_settings

settings = get_settings()


# Determine if we're using SQLite (which doesn't support pool settings)
is_sqlite = "sqlite" in settings.DATABASE_URL.lower()

# Build engine kwargs based on database type
engine_kwargs: dict[str, Any] = {
    "future": True,
    "echo": settings.DATABASE_ECHO,
}

# Only add pool settings for databases that support them (PostgreSQL, MySQL)
if not is_sqlite:
    engine_kwargs.update({
        "pool_size": 20,
        "max_overflow": 40,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "pool_timeout": 30,
    })


def enable_sqlite_savepoints(async_engine: AsyncEngine) -> None:
    """
    Let SQLAlchemy emit BEGIN itself so SAVEPOINT / begin_nested()
    behave on the sqlite driver, and turn on foreign key enforcement.
    """
    @event.listens_for(async_engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(async_engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


engine = create_async_engine(
    settings.DATABASE_URL,
    **engine_kwargs,
)

if is_sqlite:
    enable_sqlite_savepoints(engine)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
    autocommit=False,
)
