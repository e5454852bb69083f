"""Pydantic validation models."""

# Queue messages
from collection_engine.models.queue_message import (
    RegenerateCollectionMessage,
    SweepDirtyCollectionsMessage,
)

# Admin and storefront views
from collection_engine.models.collection_schemas import (
    RuleSpec,
    CollectionCreate,
    CollectionUpdate,
    MembershipEntryView,
    MembershipPage,
    CollectionStatus,
    PublishedItem,
    PublishedMembership,
)

__all__ = [
    # Queue messages
    "RegenerateCollectionMessage",
    "SweepDirtyCollectionsMessage",
    # Collection schemas
    "RuleSpec",
    "CollectionCreate",
    "CollectionUpdate",
    "MembershipEntryView",
    "MembershipPage",
    "CollectionStatus",
    "PublishedItem",
    "PublishedMembership",
]
