"""Three-way membership diff and ordering.

Pure functions, no database access. Given the current membership rows and
the items the rules match now, plan_membership decides which automatic rows
are kept, added and removed, and assigns dense positions to the merged
(manual + automatic) set.

Ordering policy:
    - SortOrder.MANUAL: surviving rows keep their relative order (by current
      position); new matches are appended in (created_at, id) order.
    - any other SortOrder: the whole merged set is sorted by that key, ties
      broken by (created_at, id).
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple
from uuid import UUID

from collection_engine.db.models import SortOrder
from collection_engine.services.catalog import ItemSnapshot

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class ExistingEntry:
    """Current membership row as seen by the planner."""
    entry_id: UUID
    item_id: UUID
    position: int
    is_manual: bool


@dataclass(frozen=True)
class PlannedEntry:
    """Target membership row. entry_id is None for rows to insert."""
    item_id: UUID
    position: int
    is_manual: bool
    entry_id: Optional[UUID] = None


@dataclass
class MembershipPlan:
    """Result of planning one regeneration.

    Attributes:
        entries: Final ordered membership with dense positions
        kept: Automatic items that still match
        added: Newly matching items (appended or sorted in)
        removed: Automatic items that no longer match
        dropped_manual: Manual items whose catalog item no longer exists
        removed_entry_ids: Row ids to delete (removed + dropped_manual rows)
    """
    entries: List[PlannedEntry] = field(default_factory=list)
    kept: List[UUID] = field(default_factory=list)
    added: List[UUID] = field(default_factory=list)
    removed: List[UUID] = field(default_factory=list)
    dropped_manual: List[UUID] = field(default_factory=list)
    removed_entry_ids: List[UUID] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.entries)

    def tuples(self) -> List[Tuple[UUID, int, bool]]:
        """(item_id, position, is_manual) for every planned row."""
        return [(e.item_id, e.position, e.is_manual) for e in self.entries]


def tiebreak_key(item: Optional[ItemSnapshot], item_id: UUID) -> Tuple[datetime, str]:
    """Deterministic (created_at, id) ordering key."""
    created = item.created_at if item is not None else _EPOCH
    return created, str(item_id)


_SORT_KEYS: Dict[SortOrder, Tuple[Callable[[ItemSnapshot], object], bool]] = {
    SortOrder.TITLE_ASC: (lambda item: (item.title or "").casefold(), False),
    SortOrder.TITLE_DESC: (lambda item: (item.title or "").casefold(), True),
    SortOrder.PRICE_ASC: (lambda item: item.price if item.price is not None else Decimal(0), False),
    SortOrder.PRICE_DESC: (lambda item: item.price if item.price is not None else Decimal(0), True),
    SortOrder.CREATED_ASC: (lambda item: item.created_at, False),
    SortOrder.CREATED_DESC: (lambda item: item.created_at, True),
}


def sort_items(item_ids: Iterable[UUID], sort_order: SortOrder, catalog: Mapping[UUID, ItemSnapshot]) -> List[UUID]:
    """Sort item ids by an explicit sort order.

    Items missing from the catalog mapping cannot be keyed and go last, in
    id order.
    """
    ids = list(item_ids)
    known = [i for i in ids if i in catalog]
    unknown = sorted((i for i in ids if i not in catalog), key=str)
    primary, descending = _SORT_KEYS[sort_order]
    # Stable two-pass sort: tiebreak first, then the primary key
    known.sort(key=lambda i: tiebreak_key(catalog[i], i))
    known.sort(key=lambda i: primary(catalog[i]), reverse=descending)
    return known + unknown


def plan_membership(
    existing: Sequence[ExistingEntry],
    matched: Sequence[ItemSnapshot],
    sort_order: SortOrder,
    catalog: Mapping[UUID, ItemSnapshot],
    live_manual_ids: Optional[Set[UUID]] = None,
) -> MembershipPlan:
    """Plan the next membership of a collection.

    Args:
        existing: Current membership rows (manual and automatic)
        matched: Items currently matching the rules (eligible items only)
        sort_order: Collection's ordering policy
        catalog: Snapshots for every item that may end up in the membership,
            used for explicit sorts and for the append tiebreak
        live_manual_ids: Manual item ids that still exist in the catalog;
            None means all manual rows are alive

    Returns:
        MembershipPlan with dense positions 0..N-1
    """
    plan = MembershipPlan()

    manual_rows: List[ExistingEntry] = []
    for row in existing:
        if not row.is_manual:
            continue
        if live_manual_ids is not None and row.item_id not in live_manual_ids:
            plan.dropped_manual.append(row.item_id)
            plan.removed_entry_ids.append(row.entry_id)
        else:
            manual_rows.append(row)
    manual_ids = {row.item_id for row in manual_rows}

    previous_auto: Dict[UUID, ExistingEntry] = {row.item_id: row for row in existing if not row.is_manual}

    target_ids: List[UUID] = []
    seen: Set[UUID] = set()
    for item in matched:
        # Pinned items are never duplicated as automatic rows
        if item.id in manual_ids or item.id in seen:
            continue
        seen.add(item.id)
        target_ids.append(item.id)
    target_set = set(target_ids)

    kept_rows = [row for item_id, row in previous_auto.items() if item_id in target_set]
    for item_id, row in previous_auto.items():
        if item_id not in target_set:
            plan.removed.append(item_id)
            plan.removed_entry_ids.append(row.entry_id)

    added = [item_id for item_id in target_ids if item_id not in previous_auto]
    added.sort(key=lambda i: tiebreak_key(catalog.get(i), i))

    survivors = sorted(manual_rows + kept_rows, key=lambda row: (row.position, str(row.item_id)))
    plan.kept = [row.item_id for row in kept_rows]
    plan.added = added

    rows_by_item: Dict[UUID, ExistingEntry] = {row.item_id: row for row in survivors}

    if sort_order == SortOrder.MANUAL:
        ordered = [row.item_id for row in survivors] + added
    else:
        ordered = sort_items([row.item_id for row in survivors] + added, sort_order, catalog)

    for position, item_id in enumerate(ordered):
        row = rows_by_item.get(item_id)
        plan.entries.append(
            PlannedEntry(
                item_id=item_id,
                position=position,
                is_manual=row.is_manual if row is not None else False,
                entry_id=row.entry_id if row is not None else None,
            )
        )
    return plan
