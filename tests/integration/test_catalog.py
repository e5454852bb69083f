"""Integration tests for catalog snapshot loading."""
import pytest
from sqlalchemy import event

from collection_engine.db.models import ProductStatus
from collection_engine.services.catalog import load_item_snapshots

PRODUCT_COUNT = 40


@pytest.fixture
def bound_parameters(engine):
    """Parameter tuples of every statement sent to the database."""
    captured = []

    def _capture(conn, cursor, statement, parameters, context, executemany):
        captured.append(parameters)

    event.listen(engine.sync_engine, "before_cursor_execute", _capture)
    yield captured
    event.remove(engine.sync_engine, "before_cursor_execute", _capture)


class TestLoadItemSnapshots:

    @pytest.mark.asyncio
    async def test_tags_are_grouped_per_product(self, seed, session_factory):
        sale = await seed.tag("sale")
        linen = await seed.tag("linen")
        tagged = await seed.product("Linen Shirt", minutes=1, tag_ids=[sale, linen])
        untagged = await seed.product("Plain Shirt", minutes=2)
        await seed.product("Draft Shirt", minutes=3, status=ProductStatus.DRAFT, tag_ids=[sale])

        async with session_factory() as session:
            snapshots = await load_item_snapshots(session)

        assert [s.id for s in snapshots] == [tagged, untagged]
        assert snapshots[0].tag_ids == {sale, linen}
        assert snapshots[1].tag_ids == frozenset()

    @pytest.mark.asyncio
    async def test_statement_size_does_not_grow_with_catalog(self, seed, session_factory, bound_parameters):
        sale = await seed.tag("sale")
        for n in range(PRODUCT_COUNT):
            await seed.product(f"Shirt {n}", minutes=n, tag_ids=[sale])
        bound_parameters.clear()

        async with session_factory() as session:
            snapshots = await load_item_snapshots(session)

        assert len(snapshots) == PRODUCT_COUNT
        assert all(s.tag_ids == {sale} for s in snapshots)
        assert bound_parameters
        assert max(len(parameters or ()) for parameters in bound_parameters) < PRODUCT_COUNT

    @pytest.mark.asyncio
    async def test_explicit_subset_includes_ineligible(self, seed, session_factory):
        sale = await seed.tag("sale")
        await seed.product("Active Shirt", minutes=1, tag_ids=[sale])
        draft = await seed.product("Draft Shirt", minutes=2, status=ProductStatus.DRAFT, tag_ids=[sale])

        async with session_factory() as session:
            snapshots = await load_item_snapshots(session, eligible_only=False, product_ids=[draft])
            assert await load_item_snapshots(session, product_ids=[]) == []

        assert [s.id for s in snapshots] == [draft]
        assert snapshots[0].tag_ids == {sale}
        assert snapshots[0].status == "draft"
