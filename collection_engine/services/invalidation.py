"""Catalog change tracking: marks affected collections dirty.

The tracker never regenerates anything. It narrows a catalog change down to
the collections whose rules could be affected and flags them; the sweep (or
an admin "regenerate now") does the actual work later.

Targeting:
    - category / vendor / tag change: collections with a rule of that type
      whose value is the changed entity's id
    - product change: collections with at least one rule of a type that
      reads one of the changed fields, plus collections whose sort order
      reads one of them (conservative)
"""
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional
import uuid

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from collection_engine.db.base import async_session_maker
from collection_engine.db.models import Collection, CollectionRule, RuleType, SortOrder

logger = structlog.get_logger(__name__)


class EntityType(str, Enum):
    """Catalog entities whose changes can affect membership."""
    CATEGORY = "category"
    VENDOR = "vendor"
    TAG = "tag"
    PRODUCT = "product"


ALL_RULE_TYPES: FrozenSet[RuleType] = frozenset(RuleType)

# Product fields -> rule types reading them
FIELD_RULE_TYPES: Dict[str, FrozenSet[RuleType]] = {
    "category_id": frozenset({RuleType.CATEGORY}),
    "vendor_id": frozenset({RuleType.VENDOR}),
    "tag_ids": frozenset({RuleType.TAG}),
    "price": frozenset({RuleType.PRICE}),
    "compare_at_price": frozenset({RuleType.COMPARE_AT_PRICE}),
    "title": frozenset({RuleType.TITLE}),
    "sku": frozenset({RuleType.SKU}),
    "created_at": frozenset({RuleType.CREATED_AT}),
    # Status flips eligibility, so every rule type is affected
    "status": ALL_RULE_TYPES,
    "created": ALL_RULE_TYPES,
    "deleted": ALL_RULE_TYPES,
}

SORTED_ORDERS: FrozenSet[SortOrder] = frozenset(o for o in SortOrder if o != SortOrder.MANUAL)

# Product fields -> sort orders reading them
FIELD_SORT_ORDERS: Dict[str, FrozenSet[SortOrder]] = {
    "title": frozenset({SortOrder.TITLE_ASC, SortOrder.TITLE_DESC}),
    "price": frozenset({SortOrder.PRICE_ASC, SortOrder.PRICE_DESC}),
    "created_at": frozenset({SortOrder.CREATED_ASC, SortOrder.CREATED_DESC}),
    "status": SORTED_ORDERS,
    "created": SORTED_ORDERS,
    "deleted": SORTED_ORDERS,
}

# Fields that never influence membership
IGNORED_FIELDS = frozenset({"description", "updated_at", "images"})

ENTITY_RULE_TYPES: Dict[EntityType, RuleType] = {
    EntityType.CATEGORY: RuleType.CATEGORY,
    EntityType.VENDOR: RuleType.VENDOR,
    EntityType.TAG: RuleType.TAG,
}


def rule_types_for_fields(changed_fields: Iterable[str]) -> FrozenSet[RuleType]:
    """Map changed product fields to the rule types that read them.

    Unknown fields map to every rule type.
    """
    affected = set()
    for name in changed_fields:
        if name in IGNORED_FIELDS:
            continue
        affected |= FIELD_RULE_TYPES.get(name, ALL_RULE_TYPES)
    return frozenset(affected)


def sort_orders_for_fields(changed_fields: Iterable[str]) -> FrozenSet[SortOrder]:
    """Map changed product fields to the sort orders that read them.

    Fields known to feed rules only (category_id, sku, ...) map to nothing;
    unknown fields map to every non-manual order.
    """
    affected = set()
    for name in changed_fields:
        if name in IGNORED_FIELDS:
            continue
        if name in FIELD_SORT_ORDERS:
            affected |= FIELD_SORT_ORDERS[name]
        elif name not in FIELD_RULE_TYPES:
            affected |= SORTED_ORDERS
    return frozenset(affected)


class InvalidationTracker:
    """Marks collections dirty in response to catalog and rule changes.

    Every method runs in its own session and is best effort: failures are
    logged and reported as zero collections marked, never raised.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.session_factory = session_factory or async_session_maker

    async def on_entity_changed(
        self,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        changed_fields: Optional[Iterable[str]] = None,
    ) -> int:
        """Handle a catalog change notification.

        Args:
            entity_type: Kind of the changed entity
            entity_id: Id of the changed entity
            changed_fields: Product fields that changed (product changes only;
                None means "unknown", which affects every rule type)

        Returns:
            Number of collections marked dirty
        """
        entity_type = EntityType(entity_type)
        log = logger.bind(entity_type=entity_type.value, entity_id=str(entity_id))

        if entity_type == EntityType.PRODUCT:
            if changed_fields is None:
                rule_types, sort_orders = ALL_RULE_TYPES, SORTED_ORDERS
            else:
                changed_fields = list(changed_fields)
                rule_types = rule_types_for_fields(changed_fields)
                sort_orders = sort_orders_for_fields(changed_fields)
            if not rule_types and not sort_orders:
                log.debug("entity_change_ignored", changed_fields=sorted(changed_fields or ()))
                return 0
            matching_rules = select(CollectionRule.collection_id).where(
                CollectionRule.rule_type.in_(sorted(rule_types, key=lambda r: r.value))
            )
            criterion = or_(
                Collection.id.in_(matching_rules),
                Collection.sort_order.in_(sorted(sort_orders, key=lambda o: o.value)),
            )
            reason = f"product:{entity_id}"
        else:
            matching_rules = select(CollectionRule.collection_id).where(
                CollectionRule.rule_type == ENTITY_RULE_TYPES[entity_type],
                func.lower(func.trim(CollectionRule.value)) == str(entity_id).lower(),
            )
            criterion = Collection.id.in_(matching_rules)
            reason = f"{entity_type.value}:{entity_id}"

        marked = await self._mark(criterion, reason)
        log.info("collections_invalidated", count=marked, reason=reason)
        return marked

    async def mark_collection_dirty(self, collection_id: uuid.UUID, reason: str = "rules_changed") -> int:
        """Mark one collection dirty (rule CRUD, match mode or sort order change)."""
        marked = await self._mark(Collection.id == collection_id, reason)
        logger.info(
            "collection_marked_dirty",
            collection_id=str(collection_id),
            reason=reason,
            marked=marked,
        )
        return marked

    @staticmethod
    def _dirty_update(criterion, reason: str):
        return (
            update(Collection)
            .where(criterion)
            .values(
                dirty=True,
                dirty_reason=reason[:255],
                invalidation_seq=Collection.invalidation_seq + 1,
            )
            .execution_options(synchronize_session=False)
        )

    @classmethod
    async def mark_dirty_in_session(cls, session: AsyncSession, collection_id: uuid.UUID, reason: str) -> int:
        """Mark a collection dirty inside the caller's transaction.

        Unlike the other methods, errors propagate: the dirty flag then
        commits or rolls back together with the caller's change.
        """
        result = await session.execute(cls._dirty_update(Collection.id == collection_id, reason))
        return result.rowcount or 0

    async def _mark(self, criterion, reason: str) -> int:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(self._dirty_update(criterion, reason))
                    return result.rowcount or 0
        except Exception as e:
            logger.error(
                "invalidation_failed",
                reason=reason,
                error=str(e),
                error_type=type(e).__name__,
            )
            return 0
