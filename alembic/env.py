"""Alembic environment for the Warden membership schema.

The URL comes from :func:`warden.database.engine.database_url`, the same
resolver the bot uses, so ``alembic upgrade head`` and the running bot always
target one database.  ``alembic.ini`` only supplies a local fallback.
"""

from __future__ import annotations

from logging.config import fileConfig

from dotenv import load_dotenv
from sqlalchemy import create_engine, pool

from alembic import context

load_dotenv()

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from warden.database.engine import database_url  # noqa: E402
from warden.database.models import Base  # noqa: E402

target_metadata = Base.metadata

# Enum-typed columns only diff under autogenerate with compare_type on.
MIGRATION_OPTIONS = {
    "target_metadata": target_metadata,
    "compare_type": True,
}


def migration_url() -> str:
    return database_url(config.get_main_option("sqlalchemy.url"))


def run_migrations_offline() -> None:
    """Emit SQL for the membership schema without connecting."""
    context.configure(
        url=migration_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **MIGRATION_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(migration_url(), poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(connection=connection, **MIGRATION_OPTIONS)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
