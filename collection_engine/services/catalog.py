"""Read-side access to the catalog: item snapshots for rule evaluation.

The catalog tables belong to the catalog subsystem. This module projects each
product into an immutable ItemSnapshot carrying exactly the attributes rules
can inspect.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from collection_engine.db.models import Product, ProductStatus, product_tags

logger = structlog.get_logger(__name__)

# Only these statuses are eligible for rule-based (automatic) membership
ELIGIBLE_STATUSES = (ProductStatus.ACTIVE,)


@dataclass(frozen=True)
class ItemSnapshot:
    """Read-only projection of a catalog item's evaluable attributes.

    Attributes:
        id: Product UUID
        category_id: Category UUID or None
        vendor_id: Vendor UUID or None
        tag_ids: Tag UUIDs attached to the product
        price: Selling price
        compare_at_price: Optional compare-at price
        title: Display title
        sku: Stock keeping unit
        created_at: Creation time (timezone-aware, UTC)
        status: Lifecycle status value ("draft", "active", "archived")
    """
    id: UUID
    price: Decimal
    title: str
    sku: str
    created_at: datetime
    status: str = ProductStatus.ACTIVE.value
    category_id: Optional[UUID] = None
    vendor_id: Optional[UUID] = None
    tag_ids: FrozenSet[UUID] = field(default_factory=frozenset)
    compare_at_price: Optional[Decimal] = None

    @property
    def is_active(self) -> bool:
        return self.status == ProductStatus.ACTIVE.value


def as_utc(value: datetime) -> datetime:
    """Return a timezone-aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def snapshot_from_product(product: Product, tag_ids: Iterable[UUID] = ()) -> ItemSnapshot:
    """Project a Product row into an ItemSnapshot."""
    return ItemSnapshot(
        id=product.id,
        category_id=product.category_id,
        vendor_id=product.vendor_id,
        tag_ids=frozenset(tag_ids),
        price=Decimal(product.price),
        compare_at_price=Decimal(product.compare_at_price) if product.compare_at_price is not None else None,
        title=product.title,
        sku=product.sku,
        created_at=as_utc(product.created_at),
        status=product.status.value,
    )


async def load_item_snapshots(
    session: AsyncSession,
    *,
    eligible_only: bool = True,
    product_ids: Optional[Iterable[UUID]] = None,
) -> List[ItemSnapshot]:
    """Load item snapshots from the catalog tables.

    Tags are fetched with the same product filter joined in rather than an
    id list, so the statement size does not grow with the catalog.

    Args:
        session: Async database session
        eligible_only: Restrict to active products (automatic matching)
        product_ids: Optional subset of product ids to load

    Returns:
        Snapshots ordered by (created_at, id)
    """
    criteria = []
    if eligible_only:
        criteria.append(Product.status.in_(ELIGIBLE_STATUSES))
    if product_ids is not None:
        ids = list(product_ids)
        if not ids:
            return []
        criteria.append(Product.id.in_(ids))

    result = await session.execute(select(Product).where(*criteria).order_by(Product.created_at, Product.id))
    products = result.scalars().all()
    if not products:
        return []

    tags_by_product = await _load_tag_ids(session, criteria)

    snapshots = [snapshot_from_product(p, tags_by_product.get(p.id, ())) for p in products]
    logger.debug("item_snapshots_loaded", count=len(snapshots), eligible_only=eligible_only)
    return snapshots


async def load_existing_product_ids(session: AsyncSession, product_ids: Iterable[UUID]) -> Set[UUID]:
    """Return the subset of product ids that still exist in the catalog."""
    ids = list(product_ids)
    if not ids:
        return set()
    result = await session.execute(select(Product.id).where(Product.id.in_(ids)))
    return set(result.scalars().all())


async def _load_tag_ids(session: AsyncSession, criteria: Sequence[Any]) -> Dict[UUID, Set[UUID]]:
    """Group tag ids by product id for products matching ``criteria``."""
    result = await session.execute(
        select(product_tags.c.product_id, product_tags.c.tag_id)
        .join(Product, Product.id == product_tags.c.product_id)
        .where(*criteria)
    )
    grouped: Dict[UUID, Set[UUID]] = {}
    for product_id, tag_id in result.all():
        grouped.setdefault(product_id, set()).add(tag_id)
    return grouped
