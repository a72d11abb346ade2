"""
Alembic environment configuration.

This env.py is configured to:
- Load DATABASE_URL from runtrack.core.config.settings, unless the caller passes
  `database_url` through `config.attributes` (used by tests and scripts)
- Use SQLAlchemy model metadata for autogenerate
- Only manage tables runtrack owns, so a shared database is left alone
- Use batch mode on SQLite, which cannot ALTER most column properties in place
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from runtrack.core.config import settings
from runtrack.models import Base  # imports all models and registers them on Base.metadata

# Alembic Config object, provides access to values within alembic.ini
config = context.config

# Interpret the config file for Python logging without muting the app's loggers.
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# Model metadata for 'autogenerate' support
target_metadata = Base.metadata


def _database_url() -> str:
    return config.attributes.get("database_url") or settings.DATABASE_URL


def include_object(object_, name, type_, reflected, compare_to):
    """Only include tables that are part of our SQLAlchemy metadata."""
    if type_ == "table":
        return name in target_metadata.tables
    return True


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (no DB connection)."""
    url = _database_url()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_object=include_object,
        compare_type=True,
        render_as_batch=url.startswith("sqlite"),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode (with DB connection)."""
    url = _database_url()
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = url

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            include_object=include_object,
            compare_type=True,
            render_as_batch=url.startswith("sqlite"),
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
