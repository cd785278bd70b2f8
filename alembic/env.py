"""Alembic environment for the Health Diary record store.

The target database comes from ``alembic -x db_url=...`` when given, otherwise
from ``DATABASE_URL`` via the application settings.
"""

import sys
from logging.config import fileConfig
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

from alembic import context

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
load_dotenv()

from health_diary.config import get_settings  # noqa: E402
from health_diary.database import Base  # noqa: E402
from health_diary.models import entry, processing_job, user  # noqa: E402,F401  (register tables)

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _database_url() -> str:
    return context.get_x_argument(as_dictionary=True).get("db_url") or get_settings().DATABASE_URL


def _configure(**kwargs) -> None:
    # SQLite cannot ALTER most columns in place; batch mode rebuilds the table.
    context.configure(
        target_metadata=Base.metadata,
        compare_type=True,
        render_as_batch=True,
        **kwargs,
    )


def run_offline(url: str) -> None:
    """Emit SQL to stdout without a connection."""
    _configure(url=url, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_online(url: str) -> None:
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = url
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with connectable.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline(_database_url())
else:
    run_online(_database_url())
