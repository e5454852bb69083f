"""Custom exception hierarchy for the collection membership engine."""
from typing import Any, Dict, Optional


class CollectionEngineError(Exception):
    """Base exception for all collection engine errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """Initialize error with message and optional structured details."""
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(CollectionEngineError):
    """Raised when a rule or collection payload is rejected at save time."""
    pass


class ConflictError(CollectionEngineError):
    """Raised when an operation conflicts with the current membership state."""
    pass


class RegenerationInProgressError(ConflictError):
    """Raised when another regeneration holds the collection lock.

    Retriable: the caller should try again once the running regeneration
    has finished.
    """
    pass


class NotFoundError(CollectionEngineError):
    """Raised when a collection, rule, item or membership entry is missing."""
    pass


class EvaluationError(CollectionEngineError):
    """Raised inside the rule evaluator when a comparison cannot be made.

    Never escapes the evaluator: it is logged and the rule evaluates to False.
    """
    pass


class RegenerationError(CollectionEngineError):
    """Raised when a regeneration fails and its transaction is rolled back."""
    pass


class DatabaseError(CollectionEngineError):
    """Raised when database operations fail."""
    pass
