"""Product ORM model with status enum and the product/tag association table.

Products belong to the catalog subsystem. The membership engine reads them
through item snapshots (see services/catalog.py) and never writes them.
"""
from sqlalchemy import Column, String, ForeignKey, Table, Enum as SQLEnum, Numeric, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from collection_engine.db.base import Base, UUIDMixin, TimestampMixin
from enum import Enum as PyEnum
from decimal import Decimal
from typing import List, Optional, TYPE_CHECKING
import uuid

if TYPE_CHECKING:
    from collection_engine.db.models.category import Category
    from collection_engine.db.models.vendor import Vendor, Tag


class ProductStatus(PyEnum):
    """Product lifecycle status enum."""
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


product_tags = Table(
    "product_tags",
    Base.metadata,
    Column("product_id", ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True, index=True),
)


class Product(Base, UUIDMixin, TimestampMixin):
    """Catalog item.

    Attributes:
        title: Product display name
        sku: Unique stock keeping unit
        category_id: Reference to category (optional)
        vendor_id: Reference to vendor (optional)
        status: Product lifecycle status (draft, active, archived)
        price: Selling price
        compare_at_price: Optional "was" price shown struck through

    Relationships:
        category: Reference to Category
        vendor: Reference to Vendor
        tags: Tags attached through product_tags
    """

    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint('price >= 0', name='check_price_non_negative'),
        CheckConstraint(
            'compare_at_price IS NULL OR compare_at_price >= 0',
            name='check_compare_at_price_non_negative'
        ),
    )

    title: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    sku: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True
    )
    category_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    vendor_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("vendors.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    # Note: values_callable ensures SQLAlchemy uses enum VALUES (lowercase strings)
    # instead of enum NAMES (uppercase) to match PostgreSQL enum values
    status: Mapped[ProductStatus] = mapped_column(
        SQLEnum(
            ProductStatus,
            name="product_status",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x]
        ),
        nullable=False,
        default=ProductStatus.DRAFT,
        server_default=ProductStatus.DRAFT.value,
        index=True
    )
    price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        index=True
    )
    compare_at_price: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2),
        nullable=True,
    )

    # Relationships
    category: Mapped[Optional["Category"]] = relationship(back_populates="products")
    vendor: Mapped[Optional["Vendor"]] = relationship(back_populates="products")
    tags: Mapped[List["Tag"]] = relationship(secondary=product_tags)

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, sku='{self.sku}', status='{self.status.value}')>"
