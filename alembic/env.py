from __future__ import annotations
from logging.config import fileConfig
from pathlib import Path
import os, sys

from alembic import context
from sqlalchemy import engine_from_config, pool

# --- Make 'reproute' importable -----------------------------------------------
ROOT = Path(__file__).resolve().parents[1]  # repo root
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Metadata for autogenerate: ledger and directory tables share one Base
from reproute.config import settings
from reproute.database import Base, normalize_db_url
from reproute import models  # noqa: F401
from reproute.models import LEDGER_TABLES

# --- Alembic config -----------------------------------------------------------
config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# With LEDGER_DATABASE_URL set the stores live apart: `-x store=ledger` migrates
# the ledger tables there, the default run migrates the directory tables only.
store = context.get_x_argument(as_dictionary=True).get("store", "directory")
if store not in ("ledger", "directory"):
    raise ValueError(f"unknown store {store!r}; use -x store=ledger or -x store=directory")
if not settings.LEDGER_DATABASE_URL:
    stores = {"ledger", "directory"}
    raw_url = settings.DATABASE_URL or os.getenv("DATABASE_URL", "")
elif store == "ledger":
    stores = {"ledger"}
    raw_url = settings.LEDGER_DATABASE_URL
else:
    stores = {"directory"}
    raw_url = settings.DATABASE_URL or os.getenv("DATABASE_URL", "")

# read by the revision scripts
config.attributes["stores"] = stores

def include_object(obj, name, type_, reflected, compare_to):
    table = name if type_ == "table" else getattr(getattr(obj, "table", None), "name", None)
    if table is None:
        return True
    return ("ledger" if table in LEDGER_TABLES else "directory") in stores

# Settings win over alembic.ini
if raw_url:
    config.set_main_option("sqlalchemy.url", normalize_db_url(raw_url))

# --- Migration runners --------------------------------------------------------
def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        include_object=include_object,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )
    with context.begin_transaction():
        context.run_migrations()

def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section) or {},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
        include_object=include_object,
            compare_type=True,
            compare_server_default=True,
        )
        with context.begin_transaction():
            context.run_migrations()

if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
