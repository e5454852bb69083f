"""Seed helpers for integration tests.

Rows are inserted directly through the ORM, bypassing the admin services, so
tests can also store states the services would refuse (malformed rules,
sparse positions, held locks).
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from collection_engine.db.models import (
    Category,
    Collection,
    CollectionProduct,
    CollectionRule,
    MatchMode,
    Product,
    ProductStatus,
    SortOrder,
    Tag,
    Vendor,
    product_tags,
)

# Products are created at BASE_TIME + minutes so creation order is explicit
BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


class Seeder:
    """Inserts catalog rows, collections and rules directly (no validation)."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
        self._sku = 0

    async def _add(self, row):
        async with self.session_factory() as session:
            async with session.begin():
                session.add(row)
        return row.id

    async def category(self, name: str = "Category") -> uuid.UUID:
        return await self._add(Category(name=name))

    async def vendor(self, name: str = "Vendor") -> uuid.UUID:
        return await self._add(Vendor(name=name))

    async def tag(self, name: str = "tag") -> uuid.UUID:
        return await self._add(Tag(name=name))

    async def product(
        self,
        title: str,
        price: str = "10",
        *,
        minutes: int = 0,
        status: ProductStatus = ProductStatus.ACTIVE,
        category_id: Optional[uuid.UUID] = None,
        vendor_id: Optional[uuid.UUID] = None,
        tag_ids: Iterable[uuid.UUID] = (),
        compare_at_price: Optional[str] = None,
    ) -> uuid.UUID:
        """Insert a product created ``minutes`` after BASE_TIME."""
        self._sku += 1
        product_id = uuid.uuid4()
        async with self.session_factory() as session:
            async with session.begin():
                session.add(
                    Product(
                        id=product_id,
                        title=title,
                        sku=f"SKU-{self._sku:04d}",
                        price=Decimal(price),
                        compare_at_price=Decimal(compare_at_price) if compare_at_price is not None else None,
                        status=status,
                        category_id=category_id,
                        vendor_id=vendor_id,
                        created_at=BASE_TIME + timedelta(minutes=minutes),
                        updated_at=BASE_TIME + timedelta(minutes=minutes),
                    )
                )
                await session.flush()
                tags = list(tag_ids)
                if tags:
                    await session.execute(
                        product_tags.insert(),
                        [{"product_id": product_id, "tag_id": tag_id} for tag_id in tags],
                    )
        return product_id

    async def collection(
        self,
        slug: str = "summer-sale",
        *,
        rules: Sequence[Tuple] = (),
        match_mode: MatchMode = MatchMode.ALL,
        sort_order: SortOrder = SortOrder.MANUAL,
        is_active: bool = True,
    ) -> uuid.UUID:
        """Insert a dirty collection with (rule_type, operator, value) rules."""
        collection = Collection(
            name=slug.replace("-", " ").title(),
            slug=slug,
            match_mode=match_mode,
            sort_order=sort_order,
            is_active=is_active,
            dirty=True,
            dirty_reason="created",
        )
        collection.rules = [
            CollectionRule(rule_type=rtype, operator=roperator, value=value, position=index)
            for index, (rtype, roperator, value) in enumerate(rules)
        ]
        return await self._add(collection)

    async def pin(self, collection_id: uuid.UUID, product_id: uuid.UUID, position: int) -> uuid.UUID:
        """Insert a manual membership row as-is."""
        return await self._add(
            CollectionProduct(
                collection_id=collection_id,
                product_id=product_id,
                position=position,
                is_manual=True,
            )
        )

    async def set_collection(self, collection_id: uuid.UUID, **values) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(Collection).where(Collection.id == collection_id).values(**values)
                )

    async def set_product(self, product_id: uuid.UUID, **values) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(update(Product).where(Product.id == product_id).values(**values))

    async def membership(self, collection_id: uuid.UUID) -> List[Tuple[uuid.UUID, int, bool]]:
        """Stored membership as (product_id, position, is_manual) in position order."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(CollectionProduct.product_id, CollectionProduct.position, CollectionProduct.is_manual)
                .where(CollectionProduct.collection_id == collection_id)
                .order_by(CollectionProduct.position)
            )
            return [tuple(row) for row in result.all()]

    async def entry_ids(self, collection_id: uuid.UUID) -> List[uuid.UUID]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(CollectionProduct.id)
                .where(CollectionProduct.collection_id == collection_id)
                .order_by(CollectionProduct.position)
            )
            return list(result.scalars().all())

    async def get_collection(self, collection_id: uuid.UUID) -> Optional[Collection]:
        async with self.session_factory() as session:
            return await session.get(Collection, collection_id)
