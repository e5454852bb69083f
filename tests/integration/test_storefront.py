"""Integration tests for the storefront read path."""
from decimal import Decimal

import pytest

from collection_engine.db.models import ProductStatus, RuleOperator, RuleType
from collection_engine.errors.exceptions import NotFoundError, ValidationError
from collection_engine.services.membership import CollectionRegenerator
from collection_engine.services.storefront import get_published_membership


@pytest.fixture
async def published(seed, session_factory, regen_settings):
    """'linen' collection: three matching shirts plus a pinned draft product."""
    shirts = [
        await seed.product(f"Linen Shirt {n}", str(10 + n), minutes=n, compare_at_price="50")
        for n in range(3)
    ]
    draft = await seed.product("Draft Scarf", "15", minutes=9, status=ProductStatus.DRAFT)
    collection_id = await seed.collection("linen", rules=[(RuleType.TITLE, RuleOperator.CONTAINS, "linen")])
    await seed.pin(collection_id, draft, 0)
    await CollectionRegenerator(session_factory, regen_settings).regenerate(collection_id)
    return collection_id, shirts, draft


class TestPublishedMembership:

    @pytest.mark.asyncio
    async def test_items_in_position_order_without_inactive_pins(self, session_factory, regen_settings, seed, published):
        collection_id, shirts, draft = published
        # The draft pin is still stored
        assert (draft, 0, True) in await seed.membership(collection_id)

        page = await get_published_membership("linen", session_factory=session_factory, settings=regen_settings)

        assert page.collection_id == collection_id
        assert page.name == "Linen"
        assert page.total == 3
        assert [item.item_id for item in page.items] == shirts
        assert [item.position for item in page.items] == [1, 2, 3]
        assert page.items[0].price == Decimal("10")
        assert page.items[0].compare_at_price == Decimal("50")

    @pytest.mark.asyncio
    async def test_pagination(self, session_factory, regen_settings, published):
        _, shirts, _ = published

        page = await get_published_membership(
            "linen", offset=1, limit=1, session_factory=session_factory, settings=regen_settings
        )

        assert page.total == 3
        assert [item.item_id for item in page.items] == [shirts[1]]

    @pytest.mark.asyncio
    async def test_dirty_collection_is_served_as_stored(self, session_factory, regen_settings, seed, published):
        collection_id, shirts, _ = published
        await seed.product("Linen Trousers", "40", minutes=20)
        await seed.set_collection(collection_id, dirty=True)

        page = await get_published_membership("linen", session_factory=session_factory, settings=regen_settings)

        assert [item.item_id for item in page.items] == shirts

    @pytest.mark.asyncio
    async def test_inactive_collection_is_hidden(self, session_factory, regen_settings, seed, published):
        collection_id, _, _ = published
        await seed.set_collection(collection_id, is_active=False)

        with pytest.raises(NotFoundError):
            await get_published_membership("linen", session_factory=session_factory, settings=regen_settings)

    @pytest.mark.asyncio
    async def test_unknown_slug(self, session_factory, regen_settings):
        with pytest.raises(NotFoundError):
            await get_published_membership("nope", session_factory=session_factory, settings=regen_settings)

    @pytest.mark.asyncio
    async def test_bad_paging(self, session_factory, regen_settings):
        with pytest.raises(ValidationError):
            await get_published_membership("linen", limit=0, session_factory=session_factory, settings=regen_settings)
