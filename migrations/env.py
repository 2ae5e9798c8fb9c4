import asyncio
import os
import sys
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config
from alembic import context

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Import settings FIRST
from app.core.config import get_settings
settings = get_settings()

# Import Base BEFORE importing models
from app.db.base import Base
from app.models import *  # noqa: F401,F403
# Import custom types
from app.models.db_types import JSONB, INET


# Alembic Config
config = context.config
target_metadata = Base.metadata

# Logging setup
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def get_dialect_name():
    """Get the database dialect name from the URL"""
    url = settings.ALEMBIC_DB_URL or settings.DATABASE_URL
    if url.startswith('postgresql'):
        return 'postgresql'
    return 'sqlite'


def render_item(type_, object_, autogen_context):
    """Custom renderer for SQLAlchemy types in migrations"""
    dialect = get_dialect_name()

    if isinstance(type_, JSONB):
        if dialect == 'postgresql':
            autogen_context.imports.add("from sqlalchemy.dialects import postgresql")
            return "postgresql.JSONB()"
        return "sa.Text()"
    elif isinstance(type_, INET):
        return "sa.String(length=45)"
    return False


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=False,
        compare_server_default=False,
        render_item=render_item,
        user_module_prefix='app.models.db_types.',
        **kwargs,
    )


def run_migrations_offline() -> None:
    '''Run migrations in 'offline' mode'''
    _configure(
        url=settings.ALEMBIC_DB_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    _configure(connection=connection, render_as_batch=get_dialect_name() == 'sqlite')

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    '''Run migrations in 'online' mode over the async driver'''
    connectable = async_engine_from_config(
        {"sqlalchemy.url": settings.ALEMBIC_DB_URL, "sqlalchemy.echo": False},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
