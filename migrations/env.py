"""Alembic environment for the campstay schema.

Revisions only execute the files under migrations/sql/, so there is no
SQLAlchemy metadata and autogenerate is never used.
"""

from __future__ import annotations

import os
import sys
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

sys.path.insert(0, os.path.dirname(__file__))

from env_helpers import _get_database_url  # noqa: E402

alembic_cfg = context.config
if alembic_cfg.config_file_name is not None:
    fileConfig(alembic_cfg.config_file_name)


def _run(**configure_kwargs) -> None:
    context.configure(target_metadata=None, **configure_kwargs)
    with context.begin_transaction():
        context.run_migrations()


def main() -> None:
    url = _get_database_url()

    if context.is_offline_mode():
        # --sql: print the DDL instead of applying it
        _run(url=url, literal_binds=True, dialect_opts={"paramstyle": "named"})
        return

    settings = dict(alembic_cfg.get_section(alembic_cfg.config_ini_section) or {})
    settings["sqlalchemy.url"] = url
    engine = engine_from_config(settings, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with engine.connect() as connection:
        _run(connection=connection)


main()
