"""Alembic environment for the Refferq webhook store.

Migrations manage two tables: `webhooks` (subscriptions and their health
counters) and `webhook_logs` (one row per delivery attempt). The database
URL comes from `settings.DATABASE_URL`, never from alembic.ini, so the same
env drives PostgreSQL via asyncpg in production and SQLite via aiosqlite
locally. Online runs go through an async engine with NullPool.

Type comparison is on so autogenerate notices changes to the JSON `events`
column and the `webhook_log_status_enum` values.
"""

import asyncio
import sys
import os

# Add project root to path so 'app' module is importable when running alembic
# from any working directory
_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from alembic import context

from app.core.config import settings
from app.core.database import Base
from app.models.webhook import Webhook, WebhookLog  # noqa: F401 ensure models are registered

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    url = settings.DATABASE_URL
    context.configure(url=url, target_metadata=target_metadata, literal_binds=True, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    connectable = create_async_engine(settings.DATABASE_URL, poolclass=pool.NullPool)
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
