"""Base SQLAlchemy configuration and mixins."""
from sqlalchemy.ext.asyncio import AsyncAttrs, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool
from sqlalchemy import DateTime, func
from datetime import datetime
from typing import Any, Dict
import uuid

from collection_engine.config import settings


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models with async support."""
    pass


class UUIDMixin:
    """Mixin for UUID primary key."""
    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


def engine_options(database_url: str) -> Dict[str, Any]:
    """Build create_async_engine keyword arguments for a database URL.

    SQLite (used by the test suite) runs on a single shared connection;
    PostgreSQL gets a real connection pool.
    """
    if database_url.startswith("sqlite"):
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }
    return {
        "pool_size": 20,
        "max_overflow": 10,
        "pool_recycle": 3600,  # Recycle connections after 1 hour
        "pool_pre_ping": True,  # Verify connection health before use
    }


# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=False,
    **engine_options(settings.database_url),
)

# Create async session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)
