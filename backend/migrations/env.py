from __future__ import annotations
from logging.config import fileConfig
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine
from alembic import context
from reward_tracker.config import settings
from reward_tracker.db import Base
import reward_tracker.models.account  # ensure models are registered
import reward_tracker.models.reward
import reward_tracker.models.goal
import reward_tracker.models.transaction

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

def database_url() -> str:
    # only the self-hosted backend has a schema to migrate
    url = config.get_main_option("sqlalchemy.url") or settings.backend_url
    if not url or url.startswith(("http://", "https://")):
        raise RuntimeError("BACKEND_URL must be a SQLAlchemy database URL to run migrations")
    return url

def run_migrations_offline():
    context.configure(
        url=database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()

def do_run_migrations(connection: Connection):
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()

async def run_migrations_online():
    connectable = create_async_engine(database_url(), poolclass=pool.NullPool, future=True)
    async with connectable.begin() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()

if context.is_offline_mode():
    run_migrations_offline()
else:
    import asyncio
    asyncio.run(run_migrations_online())
