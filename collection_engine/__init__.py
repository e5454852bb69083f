"""Dynamic collection membership engine."""

__version__ = "0.1.0"
