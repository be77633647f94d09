"""Alembic environment for the chase engine schema.

Migrations target the metadata of ``chase_core.domain.models``: practices,
clients, campaigns, enrollments, chase messages, deep links, consent
records and the audit log.

The database URL comes from ``-x db_url=...`` when given, otherwise from
the service settings (``MYSQL_URL``), so migrations and the running
services always point at the same database.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from chase_core.config import get_settings
from chase_core.domain.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    """Database URL: the db_url -x argument, else the configured MYSQL_URL."""
    override = context.get_x_argument(as_dictionary=True).get("db_url")
    return override or get_settings().mysql_url


def run_migrations_offline() -> None:
    """Emit the migration SQL as a script, without a database connection."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against a live connection."""
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = get_url()

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
