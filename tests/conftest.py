"""Pytest configuration and fixtures for test suite.

This is the root-level conftest.py that provides:
- Python path setup (so collection_engine imports without installation)
- Environment variable defaults, set before any collection_engine import
- Shared fixtures for all tests

Integration-specific fixtures are in tests/integration/conftest.py
"""
import os
import sys
from pathlib import Path

# Set environment variables BEFORE importing modules: collection_engine.db.base
# builds its engine from DATABASE_URL at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("REDIS_HOST", "localhost")
os.environ.setdefault("REDIS_PORT", "6379")
os.environ.setdefault("LOG_LEVEL", "INFO")

import pytest

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from collection_engine.services.catalog import ItemSnapshot

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_item(
    title: str = "Item",
    price: str = "10",
    *,
    minutes: int = 0,
    status: str = "active",
    category_id=None,
    vendor_id=None,
    tag_ids=(),
    compare_at_price=None,
    sku=None,
    item_id=None,
) -> ItemSnapshot:
    """Build an ItemSnapshot created ``minutes`` after BASE_TIME."""
    return ItemSnapshot(
        id=item_id or uuid4(),
        title=title,
        sku=sku or f"SKU-{title.upper().replace(' ', '-')}",
        price=Decimal(price),
        compare_at_price=Decimal(compare_at_price) if compare_at_price is not None else None,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        status=status,
        category_id=category_id,
        vendor_id=vendor_id,
        tag_ids=frozenset(tag_ids),
    )


@pytest.fixture
def item_factory():
    """Factory fixture returning make_item."""
    return make_item
