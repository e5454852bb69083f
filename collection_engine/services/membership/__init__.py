"""Collection membership: planning, storage, locking and regeneration.

Key Components:
    - plan_membership: pure three-way diff with dense positions
    - MembershipStore: admin listing, reorder, pin / unpin, plan writes
    - CollectionRegenerator: lock-serialized recomputation of one collection
"""
from collection_engine.services.membership.diff import (
    ExistingEntry,
    MembershipPlan,
    PlannedEntry,
    plan_membership,
    sort_items,
)
from collection_engine.services.membership.locks import (
    acquire_collection_lock,
    is_lock_held,
    release_collection_lock,
)
from collection_engine.services.membership.regenerator import (
    CollectionRegenerator,
    RegenerationSummary,
    SweepReport,
    dirty_collection_ids,
)
from collection_engine.services.membership.store import MembershipStore

__all__ = [
    "ExistingEntry",
    "MembershipPlan",
    "PlannedEntry",
    "plan_membership",
    "sort_items",
    "acquire_collection_lock",
    "is_lock_held",
    "release_collection_lock",
    "CollectionRegenerator",
    "RegenerationSummary",
    "SweepReport",
    "dirty_collection_ids",
    "MembershipStore",
]
