"""Integration tests for admin membership edits (list, reorder, pin, unpin)."""
from datetime import timedelta
import uuid

import pytest

from collection_engine.db.models import MatchMode, RuleOperator, RuleType, SortOrder
from collection_engine.errors.exceptions import (
    ConflictError,
    NotFoundError,
    RegenerationInProgressError,
    ValidationError,
)
from collection_engine.services.membership import CollectionRegenerator, MembershipStore
from collection_engine.services.membership.locks import utcnow


@pytest.fixture
def store(session_factory, regen_settings):
    return MembershipStore(session_factory, regen_settings)


@pytest.fixture
async def populated(seed, session_factory, regen_settings):
    """A regenerated collection whose rule matches the three 'Shirt' products."""
    products = [await seed.product(f"Shirt {n}", minutes=n) for n in range(3)]
    extra = await seed.product("Hat", minutes=10)
    collection_id = await seed.collection(
        rules=[(RuleType.TITLE, RuleOperator.STARTS_WITH, "shirt")],
        match_mode=MatchMode.ALL,
        sort_order=SortOrder.TITLE_ASC,
    )
    await CollectionRegenerator(session_factory, regen_settings).regenerate(collection_id)
    return collection_id, products, extra


class TestListEntries:

    @pytest.mark.asyncio
    async def test_pages_in_position_order(self, store, populated):
        collection_id, products, _ = populated

        page = await store.list_entries(collection_id, offset=1, limit=1)

        assert page.total == 3
        assert page.limit == 1
        assert [e.item_id for e in page.entries] == [products[1]]
        assert page.entries[0].position == 1

    @pytest.mark.asyncio
    async def test_limit_is_capped(self, store, populated):
        collection_id, _, _ = populated
        page = await store.list_entries(collection_id, limit=10_000)
        assert page.limit == 100

    @pytest.mark.asyncio
    @pytest.mark.parametrize("offset,limit", [(-1, 10), (0, 0)])
    async def test_rejects_bad_paging(self, store, populated, offset, limit):
        collection_id, _, _ = populated
        with pytest.raises(ValidationError):
            await store.list_entries(collection_id, offset=offset, limit=limit)

    @pytest.mark.asyncio
    async def test_unknown_collection(self, store):
        with pytest.raises(NotFoundError):
            await store.list_entries(uuid.uuid4())


class TestReorder:

    @pytest.mark.asyncio
    async def test_reorder_sets_positions_and_switches_to_manual(self, seed, store, populated):
        collection_id, products, _ = populated
        entry_ids = await seed.entry_ids(collection_id)
        reversed_ids = list(reversed(entry_ids))

        view = await store.reorder(collection_id, reversed_ids)

        assert [e.entry_id for e in view] == reversed_ids
        assert [e.position for e in view] == [0, 1, 2]
        assert [row[0] for row in await seed.membership(collection_id)] == list(reversed(products))
        assert (await seed.get_collection(collection_id)).sort_order == SortOrder.MANUAL

    @pytest.mark.asyncio
    async def test_reordered_membership_survives_regeneration(self, seed, store, populated, session_factory, regen_settings):
        collection_id, products, _ = populated
        await store.reorder(collection_id, list(reversed(await seed.entry_ids(collection_id))))

        await CollectionRegenerator(session_factory, regen_settings).regenerate(collection_id)

        assert [row[0] for row in await seed.membership(collection_id)] == list(reversed(products))

    @pytest.mark.asyncio
    async def test_missing_entry_is_rejected(self, seed, store, populated):
        collection_id, products, _ = populated
        entry_ids = await seed.entry_ids(collection_id)

        with pytest.raises(ConflictError) as exc_info:
            await store.reorder(collection_id, entry_ids[:2])

        assert exc_info.value.details["missing"] == [str(entry_ids[2])]
        # Nothing moved
        assert [row[0] for row in await seed.membership(collection_id)] == products

    @pytest.mark.asyncio
    async def test_duplicates_and_unknown_ids_are_rejected(self, seed, store, populated):
        collection_id, _, _ = populated
        entry_ids = await seed.entry_ids(collection_id)

        with pytest.raises(ConflictError) as exc_info:
            await store.reorder(collection_id, entry_ids + [entry_ids[0]])
        assert exc_info.value.details["duplicates"] == 1

        stranger = uuid.uuid4()
        with pytest.raises(ConflictError) as exc_info:
            await store.reorder(collection_id, entry_ids[:2] + [stranger])
        assert exc_info.value.details["unexpected"] == [str(stranger)]

    @pytest.mark.asyncio
    async def test_refused_while_regenerating(self, seed, store, populated):
        collection_id, _, _ = populated
        entry_ids = await seed.entry_ids(collection_id)
        await seed.set_collection(collection_id, lock_token="worker", lock_expires_at=utcnow() + timedelta(minutes=5))

        with pytest.raises(RegenerationInProgressError):
            await store.reorder(collection_id, list(reversed(entry_ids)))


class TestPinning:

    @pytest.mark.asyncio
    async def test_pin_appends_and_unpin_restores(self, seed, store, populated):
        collection_id, products, extra = populated
        before = await seed.membership(collection_id)

        view = await store.add_manual(collection_id, extra)
        assert view.is_manual is True
        assert view.position == 3

        assert await store.remove_manual(collection_id, extra) is True
        assert await seed.membership(collection_id) == before

    @pytest.mark.asyncio
    async def test_pin_is_idempotent(self, seed, store, populated):
        collection_id, _, extra = populated

        first = await store.add_manual(collection_id, extra)
        second = await store.add_manual(collection_id, extra)

        assert first == second
        assert len(await seed.membership(collection_id)) == 4

    @pytest.mark.asyncio
    async def test_pinning_an_automatic_member_flips_it(self, seed, store, populated):
        collection_id, products, _ = populated

        view = await store.add_manual(collection_id, products[1])

        assert view.position == 1
        assert (products[1], 1, True) in await seed.membership(collection_id)
        assert len(await seed.membership(collection_id)) == 3

    @pytest.mark.asyncio
    async def test_unpin_compacts_positions(self, seed, store, populated):
        collection_id, products, _ = populated
        await store.add_manual(collection_id, products[0])

        assert await store.remove_manual(collection_id, products[0]) is True

        assert await seed.membership(collection_id) == [(products[1], 0, False), (products[2], 1, False)]

    @pytest.mark.asyncio
    async def test_unpinning_automatic_member_is_noop(self, seed, store, populated):
        collection_id, products, _ = populated

        assert await store.remove_manual(collection_id, products[0]) is False
        assert len(await seed.membership(collection_id)) == 3

    @pytest.mark.asyncio
    async def test_pin_unknown_item(self, store, populated):
        collection_id, _, _ = populated
        with pytest.raises(NotFoundError):
            await store.add_manual(collection_id, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_pin_unknown_collection(self, store, populated):
        _, _, extra = populated
        with pytest.raises(NotFoundError):
            await store.add_manual(uuid.uuid4(), extra)

    @pytest.mark.asyncio
    async def test_pin_refused_while_regenerating(self, seed, store, populated):
        collection_id, _, extra = populated
        await seed.set_collection(collection_id, lock_token="worker", lock_expires_at=utcnow() + timedelta(minutes=5))

        with pytest.raises(RegenerationInProgressError):
            await store.add_manual(collection_id, extra)
        assert len(await seed.membership(collection_id)) == 3

    @pytest.mark.asyncio
    async def test_unpinned_item_that_matches_returns_automatically(self, seed, store, populated, session_factory, regen_settings):
        collection_id, products, _ = populated
        await store.add_manual(collection_id, products[2])
        await store.remove_manual(collection_id, products[2])
        assert len(await seed.membership(collection_id)) == 2

        await CollectionRegenerator(session_factory, regen_settings).regenerate(collection_id)

        assert (products[2], 2, False) in await seed.membership(collection_id)
