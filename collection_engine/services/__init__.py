"""Business logic services for the collection membership engine.

Available Services:
    - rules: rule compilation and evaluation (RuleEvaluator)
    - membership: diff planning, storage, locking and regeneration
    - invalidation: marks collections dirty on catalog changes
    - collections: collection and rule administration
    - storefront: published membership reads
    - catalog: item snapshot queries
"""
from collection_engine.services.rules import RuleEvaluator, validate_rule
from collection_engine.services.membership import (
    CollectionRegenerator,
    MembershipStore,
    RegenerationSummary,
    SweepReport,
    plan_membership,
)
from collection_engine.services.invalidation import EntityType, InvalidationTracker
from collection_engine.services.collections import CollectionService
from collection_engine.services.storefront import get_published_membership

__all__: list[str] = [
    # Rules
    "RuleEvaluator",
    "validate_rule",
    # Membership
    "CollectionRegenerator",
    "MembershipStore",
    "RegenerationSummary",
    "SweepReport",
    "plan_membership",
    # Invalidation
    "EntityType",
    "InvalidationTracker",
    # Admin and storefront
    "CollectionService",
    "get_published_membership",
]
