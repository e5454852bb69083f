"""Storefront read path: published membership of a collection by slug.

Reads the stored membership only. Nothing here evaluates rules or triggers a
regeneration, so a dirty collection is served as of its last regeneration.
Pinned items that are no longer active stay in the stored membership and are
filtered out here.
"""
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from collection_engine.config import RegenerationSettings, regeneration_settings
from collection_engine.db.base import async_session_maker
from collection_engine.db.models import Collection, CollectionProduct, Product
from collection_engine.errors.exceptions import NotFoundError, ValidationError
from collection_engine.models.collection_schemas import PublishedItem, PublishedMembership
from collection_engine.services.catalog import ELIGIBLE_STATUSES

logger = structlog.get_logger(__name__)


async def get_published_membership(
    slug: str,
    offset: int = 0,
    limit: Optional[int] = None,
    *,
    session_factory: Optional[async_sessionmaker] = None,
    settings: Optional[RegenerationSettings] = None,
) -> PublishedMembership:
    """Return one page of a published collection's items in position order.

    Args:
        slug: Collection handle
        offset: Items to skip
        limit: Page size (default page_size_default, capped at page_size_max)

    Raises:
        NotFoundError: If no active collection has this slug
        ValidationError: If offset or limit is out of range
    """
    settings = settings or regeneration_settings
    session_factory = session_factory or async_session_maker
    if offset < 0:
        raise ValidationError("offset must be >= 0", details={"offset": offset})
    if limit is None:
        limit = settings.page_size_default
    if limit < 1:
        raise ValidationError("limit must be >= 1", details={"limit": limit})
    limit = min(limit, settings.page_size_max)

    async with session_factory() as session:
        collection = (
            await session.execute(
                select(Collection)
                .where(Collection.slug == slug)
                .where(Collection.is_active.is_(True))
            )
        ).scalar_one_or_none()
        if collection is None:
            raise NotFoundError(f"Collection '{slug}' not found", details={"slug": slug})

        visible = (
            select(CollectionProduct.position, Product)
            .join(Product, Product.id == CollectionProduct.product_id)
            .where(CollectionProduct.collection_id == collection.id)
            .where(Product.status.in_(ELIGIBLE_STATUSES))
        )
        total = await session.scalar(select(func.count()).select_from(visible.subquery()))
        result = await session.execute(
            visible.order_by(CollectionProduct.position, CollectionProduct.id).offset(offset).limit(limit)
        )
        items = [
            PublishedItem(
                item_id=product.id,
                position=position,
                title=product.title,
                sku=product.sku,
                price=product.price,
                compare_at_price=product.compare_at_price,
            )
            for position, product in result.all()
        ]

    logger.debug("published_membership_read", slug=slug, total=total, returned=len(items))
    return PublishedMembership(
        collection_id=collection.id,
        slug=collection.slug,
        name=collection.name,
        description=collection.description,
        image=collection.image,
        seo_title=collection.seo_title,
        seo_description=collection.seo_description,
        total=total or 0,
        offset=offset,
        limit=limit,
        items=items,
    )
