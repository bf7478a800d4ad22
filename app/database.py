# app/database.py

# type: ignore[misc]
from sqlalchemy import JSON, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone
from app.core.config import get_settings
import os

settings = get_settings()

# Use environment variable directly if settings is empty
database_url = settings.DATABASE_URL or os.environ.get('DATABASE_URL', '')
if not database_url:
    raise ValueError("DATABASE_URL is not set in environment variables")

# Convert postgresql:// to postgresql+asyncpg:// for async support
if database_url.startswith('postgresql://'):
    database_url = database_url.replace('postgresql://', 'postgresql+asyncpg://', 1)

engine_options = {"echo": False, "future": True}
if database_url.startswith('postgresql'):
    engine_options.update(
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=1800,
    )

engine = create_async_engine(database_url, **engine_options)

if database_url.startswith('sqlite'):
    # SQLite leaves foreign keys (and so ON DELETE CASCADE) off unless asked per connection
    @event.listens_for(engine.sync_engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)

Base = declarative_base()

# JSON everywhere, JSONB where PostgreSQL is underneath
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utc_now() -> datetime:
    """Naive UTC timestamp, matching the TIMESTAMP(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
