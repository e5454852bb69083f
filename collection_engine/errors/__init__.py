"""Error handling module."""
from collection_engine.errors.exceptions import (
    CollectionEngineError,
    ValidationError,
    ConflictError,
    RegenerationInProgressError,
    NotFoundError,
    EvaluationError,
    RegenerationError,
    DatabaseError,
)

__all__ = [
    "CollectionEngineError",
    "ValidationError",
    "ConflictError",
    "RegenerationInProgressError",
    "NotFoundError",
    "EvaluationError",
    "RegenerationError",
    "DatabaseError",
]
