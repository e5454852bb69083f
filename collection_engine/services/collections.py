"""Collection administration: collection and rule CRUD, status, regenerate now.

Every change that can alter membership (rules, match mode, sort order) marks
the collection dirty in the same transaction as the change. Membership
itself is only ever written by the regenerator and the membership store.
"""
from typing import List, Optional, Sequence
import uuid

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from collection_engine.config import RegenerationSettings, regeneration_settings
from collection_engine.db.base import async_session_maker
from collection_engine.db.models import Collection, CollectionProduct, CollectionRule
from collection_engine.errors.exceptions import (
    CollectionEngineError,
    ConflictError,
    DatabaseError,
    NotFoundError,
)
from collection_engine.models.collection_schemas import (
    CollectionCreate,
    CollectionStatus,
    CollectionUpdate,
    RuleSpec,
)
from collection_engine.services.invalidation import InvalidationTracker
from collection_engine.services.membership.locks import is_lock_held
from collection_engine.services.membership.regenerator import CollectionRegenerator, RegenerationSummary
from collection_engine.services.rules import validate_rule

logger = structlog.get_logger(__name__)

# Attributes whose change requires a membership recomputation
MEMBERSHIP_ATTRIBUTES = ("match_mode", "sort_order")

# Attributes that cannot be cleared by an update
REQUIRED_ATTRIBUTES = ("name", "slug", "match_mode", "sort_order", "is_active")


def _validated(rule: RuleSpec):
    return validate_rule(rule.rule_type, rule.operator, rule.value)


class CollectionService:
    """Admin-facing operations on collections and their rules.

    Args:
        session_factory: Async session factory (defaults to the application's)
        settings: Regeneration settings
        regenerator: Regenerator used by regenerate_now
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        settings: Optional[RegenerationSettings] = None,
        regenerator: Optional[CollectionRegenerator] = None,
    ):
        self.session_factory = session_factory or async_session_maker
        self.settings = settings or regeneration_settings
        self.regenerator = regenerator or CollectionRegenerator(self.session_factory, self.settings)

    @staticmethod
    async def _get_collection(session: AsyncSession, collection_id: uuid.UUID, with_rules: bool = False) -> Collection:
        query = select(Collection).where(Collection.id == collection_id)
        if with_rules:
            query = query.options(selectinload(Collection.rules))
        collection = (await session.execute(query)).scalar_one_or_none()
        if collection is None:
            raise NotFoundError(
                f"Collection {collection_id} not found",
                details={"collection_id": str(collection_id)},
            )
        return collection

    @staticmethod
    async def _get_rule(session: AsyncSession, rule_id: uuid.UUID) -> CollectionRule:
        rule = await session.get(CollectionRule, rule_id)
        if rule is None:
            raise NotFoundError(f"Rule {rule_id} not found", details={"rule_id": str(rule_id)})
        return rule

    @staticmethod
    async def _ensure_slug_free(session: AsyncSession, slug: str, exclude_id: Optional[uuid.UUID] = None) -> None:
        query = select(Collection.id).where(Collection.slug == slug)
        if exclude_id is not None:
            query = query.where(Collection.id != exclude_id)
        if await session.scalar(query) is not None:
            raise ConflictError(f"Slug '{slug}' is already in use", details={"slug": slug})

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    async def create_collection(self, data: CollectionCreate) -> Collection:
        """Create a collection with its initial rules.

        New collections start dirty; their membership is computed by the
        next sweep or an explicit regenerate_now.

        Raises:
            ValidationError: If a rule is malformed
            ConflictError: If the slug is taken
        """
        validated = [_validated(rule) for rule in data.rules]

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self._ensure_slug_free(session, data.slug)
                    collection = Collection(
                        name=data.name,
                        slug=data.slug,
                        description=data.description,
                        image=data.image,
                        match_mode=data.match_mode,
                        sort_order=data.sort_order,
                        is_active=data.is_active,
                        seo_title=data.seo_title,
                        seo_description=data.seo_description,
                        dirty=True,
                        dirty_reason="created",
                    )
                    collection.rules = [
                        CollectionRule(rule_type=rtype, operator=roperator, value=value, position=index)
                        for index, (rtype, roperator, value) in enumerate(validated)
                    ]
                    session.add(collection)
                    await session.flush()
        except IntegrityError as e:
            raise ConflictError(f"Slug '{data.slug}' is already in use", details={"slug": data.slug}) from e
        except CollectionEngineError:
            raise
        except SQLAlchemyError as e:
            logger.error("create_collection_failed", slug=data.slug, error=str(e), error_type=type(e).__name__)
            raise DatabaseError(f"Failed to create collection: {e}") from e

        logger.info(
            "collection_created",
            collection_id=str(collection.id),
            slug=collection.slug,
            rules=len(validated),
        )
        return collection

    async def get_collection(self, collection_id: uuid.UUID) -> Collection:
        """Load a collection with its rules."""
        async with self.session_factory() as session:
            return await self._get_collection(session, collection_id, with_rules=True)

    async def update_collection(self, collection_id: uuid.UUID, data: CollectionUpdate) -> Collection:
        """Apply a partial update.

        Changing match_mode or sort_order marks the collection dirty.

        Raises:
            NotFoundError: If the collection does not exist
            ConflictError: If the new slug is taken
        """
        changes = data.model_dump(exclude_unset=True)
        log = logger.bind(collection_id=str(collection_id))

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    collection = await self._get_collection(session, collection_id)
                    if changes.get("slug") and changes["slug"] != collection.slug:
                        await self._ensure_slug_free(session, changes["slug"], exclude_id=collection_id)

                    changed = [
                        name for name, value in changes.items()
                        if getattr(collection, name) != value
                        and not (value is None and name in REQUIRED_ATTRIBUTES)
                    ]
                    for name in changed:
                        setattr(collection, name, changes[name])

                    affecting = [name for name in changed if name in MEMBERSHIP_ATTRIBUTES]
                    if affecting:
                        await InvalidationTracker.mark_dirty_in_session(
                            session, collection_id, f"{'+'.join(affecting)}_changed"
                        )
                        await session.refresh(collection)
                    else:
                        await session.flush()
        except CollectionEngineError:
            raise
        except IntegrityError as e:
            raise ConflictError("Collection update conflicts with an existing collection", details=changes) from e
        except SQLAlchemyError as e:
            log.error("update_collection_failed", error=str(e), error_type=type(e).__name__)
            raise DatabaseError(f"Failed to update collection: {e}") from e

        log.info("collection_updated", changed=changed)
        return collection

    async def delete_collection(self, collection_id: uuid.UUID) -> None:
        """Delete a collection with its rules and membership.

        A regeneration running concurrently notices the deletion before
        commit and aborts.
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self._get_collection(session, collection_id)
                    await session.execute(
                        delete(CollectionProduct).where(CollectionProduct.collection_id == collection_id)
                    )
                    await session.execute(
                        delete(CollectionRule).where(CollectionRule.collection_id == collection_id)
                    )
                    await session.execute(delete(Collection).where(Collection.id == collection_id))
        except CollectionEngineError:
            raise
        except SQLAlchemyError as e:
            logger.error(
                "delete_collection_failed",
                collection_id=str(collection_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise DatabaseError(f"Failed to delete collection: {e}") from e

        logger.info("collection_deleted", collection_id=str(collection_id))

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    async def add_rule(self, collection_id: uuid.UUID, rule: RuleSpec) -> CollectionRule:
        """Append a validated rule and mark the collection dirty."""
        rtype, roperator, value = _validated(rule)

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self._get_collection(session, collection_id)
                    count = await session.scalar(
                        select(func.count())
                        .select_from(CollectionRule)
                        .where(CollectionRule.collection_id == collection_id)
                    )
                    row = CollectionRule(
                        collection_id=collection_id,
                        rule_type=rtype,
                        operator=roperator,
                        value=value,
                        position=count or 0,
                    )
                    session.add(row)
                    await session.flush()
                    await InvalidationTracker.mark_dirty_in_session(session, collection_id, "rule_added")
        except CollectionEngineError:
            raise
        except SQLAlchemyError as e:
            logger.error("add_rule_failed", collection_id=str(collection_id), error=str(e))
            raise DatabaseError(f"Failed to add rule: {e}") from e

        logger.info(
            "rule_added",
            collection_id=str(collection_id),
            rule_id=str(row.id),
            rule_type=rtype.value,
            operator=roperator.value,
        )
        return row

    async def update_rule(self, rule_id: uuid.UUID, rule: RuleSpec) -> CollectionRule:
        """Replace a rule's type, operator and value."""
        rtype, roperator, value = _validated(rule)

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    row = await self._get_rule(session, rule_id)
                    row.rule_type = rtype
                    row.operator = roperator
                    row.value = value
                    await session.flush()
                    await InvalidationTracker.mark_dirty_in_session(session, row.collection_id, "rule_updated")
        except CollectionEngineError:
            raise
        except SQLAlchemyError as e:
            logger.error("update_rule_failed", rule_id=str(rule_id), error=str(e))
            raise DatabaseError(f"Failed to update rule: {e}") from e

        logger.info("rule_updated", collection_id=str(row.collection_id), rule_id=str(rule_id))
        return row

    async def delete_rule(self, rule_id: uuid.UUID) -> None:
        """Delete a rule and renumber the remaining rules."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    row = await self._get_rule(session, rule_id)
                    collection_id = row.collection_id
                    await session.delete(row)
                    await session.flush()

                    result = await session.execute(
                        select(CollectionRule)
                        .where(CollectionRule.collection_id == collection_id)
                        .order_by(CollectionRule.position, CollectionRule.created_at)
                    )
                    for index, remaining in enumerate(result.scalars().all()):
                        remaining.position = index
                    await session.flush()
                    await InvalidationTracker.mark_dirty_in_session(session, collection_id, "rule_deleted")
        except CollectionEngineError:
            raise
        except SQLAlchemyError as e:
            logger.error("delete_rule_failed", rule_id=str(rule_id), error=str(e))
            raise DatabaseError(f"Failed to delete rule: {e}") from e

        logger.info("rule_deleted", collection_id=str(collection_id), rule_id=str(rule_id))

    async def replace_rules(self, collection_id: uuid.UUID, rules: Sequence[RuleSpec]) -> List[CollectionRule]:
        """Replace the whole rule set of a collection.

        All rules are validated before anything is written.
        """
        validated = [_validated(rule) for rule in rules]

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self._get_collection(session, collection_id)
                    await session.execute(
                        delete(CollectionRule).where(CollectionRule.collection_id == collection_id)
                    )
                    rows = [
                        CollectionRule(
                            collection_id=collection_id,
                            rule_type=rtype,
                            operator=roperator,
                            value=value,
                            position=index,
                        )
                        for index, (rtype, roperator, value) in enumerate(validated)
                    ]
                    session.add_all(rows)
                    await session.flush()
                    await InvalidationTracker.mark_dirty_in_session(session, collection_id, "rules_replaced")
        except CollectionEngineError:
            raise
        except SQLAlchemyError as e:
            logger.error("replace_rules_failed", collection_id=str(collection_id), error=str(e))
            raise DatabaseError(f"Failed to replace rules: {e}") from e

        logger.info("rules_replaced", collection_id=str(collection_id), rules=len(rows))
        return rows

    # ------------------------------------------------------------------
    # Status and regeneration
    # ------------------------------------------------------------------

    async def get_status(self, collection_id: uuid.UUID) -> CollectionStatus:
        """Regeneration status and membership size of a collection."""
        async with self.session_factory() as session:
            collection = await self._get_collection(session, collection_id)
            member_count = await session.scalar(
                select(func.count())
                .select_from(CollectionProduct)
                .where(CollectionProduct.collection_id == collection_id)
            )
            return CollectionStatus(
                collection_id=collection.id,
                dirty=collection.dirty,
                dirty_reason=collection.dirty_reason,
                invalidation_seq=collection.invalidation_seq,
                last_regenerated_at=collection.last_regenerated_at,
                last_error=collection.last_error,
                regenerating=is_lock_held(collection),
                member_count=member_count or 0,
            )

    async def regenerate_now(self, collection_id: uuid.UUID) -> RegenerationSummary:
        """Regenerate synchronously, waiting briefly for a running regeneration.

        Raises:
            RegenerationInProgressError: Lock still held after lock_wait_seconds
        """
        return await self.regenerator.regenerate(
            collection_id,
            wait_seconds=self.settings.lock_wait_seconds,
            trigger="admin",
        )
