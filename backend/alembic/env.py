"""
Alembic migration environment.

Migrations run synchronously against DATABASE_URL_SYNC (psycopg2 in
production); the service itself talks to the same database through asyncpg.
A sqlite:// sync URL is accepted for local development, in which case ALTERs
are emitted in batch mode. Offline mode renders a SQL script instead.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

import boxoffice.models  # noqa: F401 - registers every table on Base.metadata
from boxoffice.core.config import get_settings
from boxoffice.db.base import Base

config = context.config
settings = get_settings()

# A caller running migrations programmatically can pin the URL on the Config
if not config.attributes.get("url_from_caller"):
    config.set_main_option("sqlalchemy.url", settings.DATABASE_URL_SYNC)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _context_options(url: str) -> dict:
    # Constraint names and CHECKs carry the booking invariants; compare them too
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "compare_server_default": True,
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_context_options(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, **_context_options(str(connectable.url)))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
