"""
Alembic environment for the Lynkby auth backend
-----------------------------------------------

- Reads DATABASE_URL_SYNC from .env via Settings
- Points Alembic at Base.metadata so autogenerate sees every model
- Uses a *sync* SQLAlchemy engine for migrations (safe for both
  'revision --autogenerate' and 'upgrade')
"""

from logging.config import fileConfig

from alembic import context  # type: ignore[attr-defined]
from sqlalchemy import create_engine, pool

# ─── App imports ────────────────────────────────────────────────────────
from app.core.config import get_settings
from app.models import Base

# ─── Load DB URL from .env ──────────────────────────────────────────────
settings = get_settings()
config = context.config
config.set_main_option("sqlalchemy.url", settings.database_url_sync)

# ─── Logging ───────────────────────────────────────────────────────────
if config.config_file_name:
    fileConfig(config.config_file_name)

# ─── Metadata target for autogenerate ──────────────────────────────────
target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Generate SQL script without connecting to the DB."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against a live database using a *sync* engine."""
    connectable = create_engine(
        settings.database_url_sync,
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
