"""Collection, rule and membership ORM models.

A collection is a named, rule-driven grouping of catalog products. Its
membership rows (collection_products) are either automatic (derived from the
rules on every regeneration) or manual (pinned by an operator).
"""
from sqlalchemy import (
    String,
    Text,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    Index,
    Enum as SQLEnum,
    false,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from collection_engine.db.base import Base, UUIDMixin, TimestampMixin
from datetime import datetime
from enum import Enum as PyEnum
from typing import List, TYPE_CHECKING
import uuid

if TYPE_CHECKING:
    from collection_engine.db.models.product import Product


class MatchMode(PyEnum):
    """How a collection combines its rules."""
    ALL = "all"
    ANY = "any"


class SortOrder(PyEnum):
    """Display order policy for a collection's members.

    MANUAL keeps the existing order across regenerations and appends new
    matches; every other value re-sorts the whole membership.
    """
    MANUAL = "manual"
    TITLE_ASC = "title_asc"
    TITLE_DESC = "title_desc"
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    CREATED_ASC = "created_asc"
    CREATED_DESC = "created_desc"


class RuleType(PyEnum):
    """Catalog attribute a rule inspects."""
    CATEGORY = "category"
    VENDOR = "vendor"
    TAG = "tag"
    PRICE = "price"
    COMPARE_AT_PRICE = "compare_at_price"
    TITLE = "title"
    SKU = "sku"
    CREATED_AT = "created_at"
    STATUS = "status"


class RuleOperator(PyEnum):
    """Comparison applied between the item attribute and the rule value."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_OR_EQUAL = "less_or_equal"


def _enum_column(enum_cls: type, name: str) -> SQLEnum:
    # Stored as VARCHAR + CHECK so new members only need a constraint change
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=32,
        values_callable=lambda x: [e.value for e in x],
    )


class Collection(Base, UUIDMixin, TimestampMixin):
    """Collection model with rule configuration and regeneration bookkeeping.

    Attributes:
        name: Display name
        slug: Unique storefront handle
        match_mode: ALL (AND) or ANY (OR) combination of rules
        sort_order: Display order policy
        is_active: Only active collections are published to the storefront
        dirty: Membership needs recomputation
        invalidation_seq: Bumped on every dirty-marking; a regeneration only
            clears ``dirty`` when the sequence is unchanged since it started
        last_regenerated_at: Completion time of the last successful regeneration
        last_error: Message of the last failed regeneration (None after success)
        lock_token: Owner of the per-collection regeneration lock (None = free)
        lock_expires_at: Claims past this instant may be taken over
    """

    __tablename__ = "collections"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    match_mode: Mapped[MatchMode] = mapped_column(
        _enum_column(MatchMode, "collection_match_mode"),
        nullable=False,
        default=MatchMode.ALL,
        server_default=MatchMode.ALL.value,
    )
    sort_order: Mapped[SortOrder] = mapped_column(
        _enum_column(SortOrder, "collection_sort_order"),
        nullable=False,
        default=SortOrder.MANUAL,
        server_default=SortOrder.MANUAL.value,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
        index=True,
    )
    seo_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    seo_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Regeneration bookkeeping
    dirty: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
        index=True,
    )
    dirty_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    invalidation_seq: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )
    last_regenerated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    lock_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    lock_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    rules: Mapped[List["CollectionRule"]] = relationship(
        back_populates="collection",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="CollectionRule.position",
    )
    entries: Mapped[List["CollectionProduct"]] = relationship(
        back_populates="collection",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="CollectionProduct.position",
    )

    def __repr__(self) -> str:
        return f"<Collection(id={self.id}, slug='{self.slug}', dirty={self.dirty})>"


class CollectionRule(Base, UUIDMixin, TimestampMixin):
    """One predicate (type + operator + value) attached to a collection.

    ``position`` is display order only; it never affects evaluation.
    """

    __tablename__ = "collection_rules"

    collection_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("collections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    rule_type: Mapped[RuleType] = mapped_column(
        _enum_column(RuleType, "collection_rule_type"),
        nullable=False,
        index=True,
    )
    operator: Mapped[RuleOperator] = mapped_column(
        _enum_column(RuleOperator, "collection_rule_operator"),
        nullable=False,
    )
    value: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # Relationships
    collection: Mapped["Collection"] = relationship(back_populates="rules")

    def __repr__(self) -> str:
        return (
            f"<CollectionRule(id={self.id}, {self.rule_type.value} "
            f"{self.operator.value} '{self.value}')>"
        )


class CollectionProduct(Base, UUIDMixin, TimestampMixin):
    """Membership entry: one product in one collection at one position."""

    __tablename__ = "collection_products"
    __table_args__ = (
        UniqueConstraint('collection_id', 'product_id', name='uq_collection_product'),
        Index('idx_collection_products_position', 'collection_id', 'position'),
    )

    collection_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("collections.id", ondelete="CASCADE"),
        nullable=False,
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    is_manual: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )

    # Relationships
    collection: Mapped["Collection"] = relationship(back_populates="entries")
    product: Mapped["Product"] = relationship()

    def __repr__(self) -> str:
        return (
            f"<CollectionProduct(collection_id={self.collection_id}, "
            f"product_id={self.product_id}, position={self.position}, manual={self.is_manual})>"
        )
