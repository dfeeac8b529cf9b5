from __future__ import annotations

from alembic import context
from sqlalchemy import engine_from_config, pool

from engagement.config import get_settings
from engagement.tables import metadata

config = context.config

# alembic.ini carries the logging setup for migration runs.
if config.config_file_name is not None:
    from logging.config import fileConfig

    fileConfig(config.config_file_name)

# Autogenerate diffs against the engagement tables.
target_metadata = metadata


def database_url() -> str:
    # Same .env search as the API (ENV_PATH, backend/api/.env, cwd).
    return get_settings().database_url


def run_offline() -> None:
    """Emit SQL to stdout instead of touching a database."""
    context.configure(
        url=database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = database_url()
    engine = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool, future=True)

    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
