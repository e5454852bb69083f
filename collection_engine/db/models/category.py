"""Category ORM model with self-referential hierarchy."""
from sqlalchemy import String, ForeignKey, UniqueConstraint, CheckConstraint, func, DateTime, Boolean, true
from sqlalchemy.orm import Mapped, mapped_column, relationship
from collection_engine.db.base import Base, UUIDMixin
from datetime import datetime
from typing import List, Optional, TYPE_CHECKING
import uuid

if TYPE_CHECKING:
    from collection_engine.db.models.product import Product


class Category(Base, UUIDMixin):
    """Catalog category with self-referential parent-child relationships.

    Owned by the catalog subsystem; the engine only reads it and receives
    change notifications when a category is edited.
    """

    __tablename__ = "categories"
    __table_args__ = (
        UniqueConstraint('name', 'parent_id', name='uq_category_name_parent'),
        CheckConstraint('id != parent_id', name='chk_no_self_reference'),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
        index=True,
        doc="Soft delete flag"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    # Relationships
    parent: Mapped[Optional["Category"]] = relationship(
        remote_side="Category.id",
        back_populates="children",
        foreign_keys=[parent_id]
    )
    children: Mapped[List["Category"]] = relationship(
        back_populates="parent",
        foreign_keys=[parent_id]
    )
    products: Mapped[List["Product"]] = relationship(
        back_populates="category"
    )

    def __repr__(self) -> str:
        return f"<Category(id={self.id}, name='{self.name}')>"
