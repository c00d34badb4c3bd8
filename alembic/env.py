"""Migration environment for the catalog_search schema.

Run from the repository root with ``alembic upgrade head``; ``alembic.ini``
points ``script_location`` here. The database URL is
``settings.postgres_url_sync`` (the psycopg driver, built from the
``POSTGRES_*`` environment variables) unless overridden on the command line
with ``alembic -x db_url=<url> upgrade head``. The target metadata is
``catalog_search.db.models.Base``, which owns the ``products`` and
``sync_runs`` tables. Tables outside that metadata are left alone by
autogenerate.
"""
from __future__ import annotations

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context
from catalog_search.config import settings
from catalog_search.db.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def database_url() -> str:
    """Return the ``-x db_url`` override, else the configured sync URL."""
    return context.get_x_argument(as_dictionary=True).get("db_url") or settings.postgres_url_sync


def include_object(obj, name, type_, reflected, compare_to) -> bool:
    # Reflected tables with no model belong to something else sharing the database
    if type_ == "table" and reflected and compare_to is None:
        return False
    return True


def configure_options() -> dict:
    url = database_url()
    return {
        "target_metadata": target_metadata,
        "include_object": include_object,
        "compare_type": True,
        "compare_server_default": True,
        # SQLite cannot ALTER columns in place
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    """Emit the migration SQL to stdout without connecting."""
    context.configure(
        url=database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **configure_options(),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = database_url()

    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(connection=connection, **configure_options())

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
