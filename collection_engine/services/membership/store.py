"""Membership persistence and foreground membership edits.

MembershipStore owns the collection_products rows. Regeneration writes a
whole plan through write_plan inside its own transaction; admin edits
(reorder, pin, unpin) run here, each in one short transaction that first
takes the collection row lock and refuses to proceed while a regeneration
holds the collection's regeneration lock.

Positions are dense 0..N-1 after every operation.
"""
from typing import Dict, List, Optional, Sequence
import uuid

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from collection_engine.config import RegenerationSettings, regeneration_settings
from collection_engine.db.base import async_session_maker
from collection_engine.db.models import Collection, CollectionProduct, Product, SortOrder
from collection_engine.errors.exceptions import (
    CollectionEngineError,
    ConflictError,
    DatabaseError,
    NotFoundError,
    RegenerationInProgressError,
    ValidationError,
)
from collection_engine.models.collection_schemas import MembershipEntryView, MembershipPage
from collection_engine.services.membership.diff import ExistingEntry, MembershipPlan
from collection_engine.services.membership.locks import is_lock_held

logger = structlog.get_logger(__name__)


def _entry_view(row: CollectionProduct) -> MembershipEntryView:
    return MembershipEntryView(
        entry_id=row.id,
        item_id=row.product_id,
        position=row.position,
        is_manual=row.is_manual,
    )


class MembershipStore:
    """Reads and edits the stored membership of collections.

    Args:
        session_factory: Async session factory (defaults to the application's)
        settings: Regeneration settings (page sizes)
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        settings: Optional[RegenerationSettings] = None,
    ):
        self.session_factory = session_factory or async_session_maker
        self.settings = settings or regeneration_settings

    # ------------------------------------------------------------------
    # Shared helpers (also used by the regenerator inside its transaction)
    # ------------------------------------------------------------------

    @staticmethod
    async def load_entries(session: AsyncSession, collection_id: uuid.UUID) -> List[ExistingEntry]:
        """Load a collection's membership rows in position order."""
        result = await session.execute(
            select(CollectionProduct)
            .where(CollectionProduct.collection_id == collection_id)
            .order_by(CollectionProduct.position, CollectionProduct.id)
        )
        return [
            ExistingEntry(
                entry_id=row.id,
                item_id=row.product_id,
                position=row.position,
                is_manual=row.is_manual,
            )
            for row in result.scalars().all()
        ]

    @staticmethod
    async def write_plan(session: AsyncSession, collection_id: uuid.UUID, plan: MembershipPlan) -> int:
        """Apply a regeneration plan within the caller's transaction.

        Deletes removed rows first, then moves surviving rows whose position
        changed and inserts the new automatic rows.

        Returns:
            Number of rows written (deleted + moved + inserted)
        """
        written = 0
        if plan.removed_entry_ids:
            await session.execute(
                delete(CollectionProduct).where(CollectionProduct.id.in_(plan.removed_entry_ids))
            )
            written += len(plan.removed_entry_ids)

        result = await session.execute(
            select(CollectionProduct).where(CollectionProduct.collection_id == collection_id)
        )
        rows: Dict[uuid.UUID, CollectionProduct] = {row.id: row for row in result.scalars().all()}

        for entry in plan.entries:
            if entry.entry_id is None:
                session.add(
                    CollectionProduct(
                        collection_id=collection_id,
                        product_id=entry.item_id,
                        position=entry.position,
                        is_manual=entry.is_manual,
                    )
                )
                written += 1
                continue
            row = rows.get(entry.entry_id)
            if row is None:
                raise ConflictError(
                    f"Membership entry {entry.entry_id} disappeared during regeneration",
                    details={"collection_id": str(collection_id), "entry_id": str(entry.entry_id)},
                )
            if row.position != entry.position:
                row.position = entry.position
                written += 1

        await session.flush()
        return written

    @staticmethod
    async def compact_positions(session: AsyncSession, collection_id: uuid.UUID) -> int:
        """Re-densify positions to 0..N-1 keeping the current order.

        Returns:
            Number of rows moved
        """
        result = await session.execute(
            select(CollectionProduct)
            .where(CollectionProduct.collection_id == collection_id)
            .order_by(CollectionProduct.position, CollectionProduct.id)
        )
        moved = 0
        for index, row in enumerate(result.scalars().all()):
            if row.position != index:
                row.position = index
                moved += 1
        await session.flush()
        return moved

    @staticmethod
    async def lock_collection_row(session: AsyncSession, collection_id: uuid.UUID) -> Collection:
        """Select the collection FOR UPDATE and check no regeneration is running.

        Raises:
            NotFoundError: If the collection does not exist
            RegenerationInProgressError: If a regeneration holds the lock
        """
        result = await session.execute(
            select(Collection).where(Collection.id == collection_id).with_for_update()
        )
        collection = result.scalar_one_or_none()
        if collection is None:
            raise NotFoundError(
                f"Collection {collection_id} not found",
                details={"collection_id": str(collection_id)},
            )
        if is_lock_held(collection):
            raise RegenerationInProgressError(
                f"Collection {collection_id} is being regenerated, retry later",
                details={"collection_id": str(collection_id), "retriable": True},
            )
        return collection

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    async def list_entries(
        self,
        collection_id: uuid.UUID,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> MembershipPage:
        """Paginated, position-ordered listing of a collection's membership.

        Args:
            collection_id: Collection UUID
            offset: Rows to skip
            limit: Page size (default page_size_default, capped at page_size_max)

        Raises:
            ValidationError: If offset or limit is negative / zero
            NotFoundError: If the collection does not exist
        """
        if offset < 0:
            raise ValidationError("offset must be >= 0", details={"offset": offset})
        if limit is None:
            limit = self.settings.page_size_default
        if limit < 1:
            raise ValidationError("limit must be >= 1", details={"limit": limit})
        limit = min(limit, self.settings.page_size_max)

        try:
            async with self.session_factory() as session:
                exists = await session.scalar(select(Collection.id).where(Collection.id == collection_id))
                if exists is None:
                    raise NotFoundError(
                        f"Collection {collection_id} not found",
                        details={"collection_id": str(collection_id)},
                    )
                total = await session.scalar(
                    select(func.count())
                    .select_from(CollectionProduct)
                    .where(CollectionProduct.collection_id == collection_id)
                )
                result = await session.execute(
                    select(CollectionProduct)
                    .where(CollectionProduct.collection_id == collection_id)
                    .order_by(CollectionProduct.position, CollectionProduct.id)
                    .offset(offset)
                    .limit(limit)
                )
                entries = [_entry_view(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error(
                "list_entries_failed",
                collection_id=str(collection_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise DatabaseError(f"Failed to list membership: {e}") from e

        return MembershipPage(
            collection_id=collection_id,
            total=total or 0,
            offset=offset,
            limit=limit,
            entries=entries,
        )

    async def reorder(self, collection_id: uuid.UUID, ordered_entry_ids: Sequence[uuid.UUID]) -> List[MembershipEntryView]:
        """Replace the order of a collection's membership.

        ordered_entry_ids must contain exactly the collection's current
        entry ids, each once. Entry i gets position i and the collection
        switches to the manual sort order so the next regeneration keeps
        this order.

        Returns:
            The membership in its new order

        Raises:
            ConflictError: If the id set does not match the current entries
            NotFoundError: If the collection does not exist
            RegenerationInProgressError: If a regeneration is running
        """
        log = logger.bind(collection_id=str(collection_id))
        ordered = list(ordered_entry_ids)

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    collection = await self.lock_collection_row(session, collection_id)

                    result = await session.execute(
                        select(CollectionProduct).where(CollectionProduct.collection_id == collection_id)
                    )
                    rows = {row.id: row for row in result.scalars().all()}

                    requested = set(ordered)
                    if len(requested) != len(ordered) or requested != set(rows):
                        missing = [str(i) for i in rows if i not in requested]
                        unexpected = [str(i) for i in requested if i not in rows]
                        log.warning(
                            "reorder_rejected",
                            expected=len(rows),
                            received=len(ordered),
                            missing=len(missing),
                            unexpected=len(unexpected),
                        )
                        raise ConflictError(
                            "Reorder must list every membership entry exactly once",
                            details={
                                "collection_id": str(collection_id),
                                "missing": missing,
                                "unexpected": unexpected,
                                "duplicates": len(ordered) - len(requested),
                            },
                        )

                    moved = 0
                    for position, entry_id in enumerate(ordered):
                        row = rows[entry_id]
                        if row.position != position:
                            row.position = position
                            moved += 1

                    if collection.sort_order != SortOrder.MANUAL:
                        log.info(
                            "sort_order_switched_to_manual",
                            previous_sort_order=collection.sort_order.value,
                        )
                        collection.sort_order = SortOrder.MANUAL

                    await session.flush()
                    view = [_entry_view(rows[entry_id]) for entry_id in ordered]
        except CollectionEngineError:
            raise
        except SQLAlchemyError as e:
            log.error("reorder_failed", error=str(e), error_type=type(e).__name__)
            raise DatabaseError(f"Failed to reorder collection: {e}") from e

        log.info("membership_reordered", entries=len(ordered), moved=moved)
        return view

    async def add_manual(self, collection_id: uuid.UUID, item_id: uuid.UUID) -> MembershipEntryView:
        """Pin an item into a collection.

        Idempotent: pinning an already pinned item changes nothing. An item
        that is already an automatic member is flipped to manual in place;
        otherwise a new row is appended after the current last position.

        Raises:
            NotFoundError: If the collection or the item does not exist
            RegenerationInProgressError: If a regeneration is running
        """
        log = logger.bind(collection_id=str(collection_id), item_id=str(item_id))

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self.lock_collection_row(session, collection_id)

                    product_exists = await session.scalar(select(Product.id).where(Product.id == item_id))
                    if product_exists is None:
                        raise NotFoundError(
                            f"Item {item_id} not found",
                            details={"item_id": str(item_id)},
                        )

                    result = await session.execute(
                        select(CollectionProduct)
                        .where(CollectionProduct.collection_id == collection_id)
                        .where(CollectionProduct.product_id == item_id)
                    )
                    row = result.scalar_one_or_none()

                    if row is not None and row.is_manual:
                        log.debug("item_already_pinned", position=row.position)
                        return _entry_view(row)

                    if row is not None:
                        row.is_manual = True
                        action = "flipped"
                    else:
                        last = await session.scalar(
                            select(func.max(CollectionProduct.position))
                            .where(CollectionProduct.collection_id == collection_id)
                        )
                        row = CollectionProduct(
                            collection_id=collection_id,
                            product_id=item_id,
                            position=(last + 1) if last is not None else 0,
                            is_manual=True,
                        )
                        session.add(row)
                        action = "inserted"

                    await session.flush()
                    view = _entry_view(row)
        except CollectionEngineError:
            raise
        except SQLAlchemyError as e:
            log.error("add_manual_failed", error=str(e), error_type=type(e).__name__)
            raise DatabaseError(f"Failed to pin item: {e}") from e

        log.info("item_pinned", action=action, position=view.position)
        return view

    async def remove_manual(self, collection_id: uuid.UUID, item_id: uuid.UUID) -> bool:
        """Unpin an item and re-densify positions.

        Only manual rows are removed. Automatic rows and non-members are left
        alone and the call returns False. A removed item that still matches
        the rules comes back as an automatic member on the next regeneration.

        Returns:
            True if a manual row was deleted

        Raises:
            NotFoundError: If the collection does not exist
            RegenerationInProgressError: If a regeneration is running
        """
        log = logger.bind(collection_id=str(collection_id), item_id=str(item_id))

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self.lock_collection_row(session, collection_id)

                    result = await session.execute(
                        select(CollectionProduct)
                        .where(CollectionProduct.collection_id == collection_id)
                        .where(CollectionProduct.product_id == item_id)
                    )
                    row = result.scalar_one_or_none()
                    if row is None or not row.is_manual:
                        log.debug("unpin_noop", member=row is not None)
                        return False

                    await session.delete(row)
                    await session.flush()
                    moved = await self.compact_positions(session, collection_id)
        except CollectionEngineError:
            raise
        except SQLAlchemyError as e:
            log.error("remove_manual_failed", error=str(e), error_type=type(e).__name__)
            raise DatabaseError(f"Failed to unpin item: {e}") from e

        log.info("item_unpinned", moved=moved)
        return True
