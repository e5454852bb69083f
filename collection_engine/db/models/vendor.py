"""Vendor and Tag ORM models."""
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from collection_engine.db.base import Base, UUIDMixin, TimestampMixin
from typing import List, TYPE_CHECKING

if TYPE_CHECKING:
    from collection_engine.db.models.product import Product


class Vendor(Base, UUIDMixin, TimestampMixin):
    """Vendor (brand / manufacturer) a product is sold under."""

    __tablename__ = "vendors"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)

    # Relationships
    products: Mapped[List["Product"]] = relationship(back_populates="vendor")

    def __repr__(self) -> str:
        return f"<Vendor(id={self.id}, name='{self.name}')>"


class Tag(Base, UUIDMixin, TimestampMixin):
    """Free-form product tag."""

    __tablename__ = "tags"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)

    def __repr__(self) -> str:
        return f"<Tag(id={self.id}, name='{self.name}')>"
