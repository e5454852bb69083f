"""Database module."""
from collection_engine.db.base import (
    Base,
    UUIDMixin,
    TimestampMixin,
    engine,
    engine_options,
    async_session_maker,
)

__all__ = [
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "engine",
    "engine_options",
    "async_session_maker",
]
