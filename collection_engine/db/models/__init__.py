"""Database models for the collection membership engine."""
from collection_engine.db.models.category import Category
from collection_engine.db.models.vendor import Vendor, Tag
from collection_engine.db.models.product import Product, ProductStatus, product_tags
from collection_engine.db.models.collection import (
    Collection,
    CollectionRule,
    CollectionProduct,
    MatchMode,
    SortOrder,
    RuleType,
    RuleOperator,
)

__all__ = [
    # Catalog models (read side)
    "Category",
    "Vendor",
    "Tag",
    "Product",
    "ProductStatus",
    "product_tags",
    # Collection models
    "Collection",
    "CollectionRule",
    "CollectionProduct",
    "MatchMode",
    "SortOrder",
    "RuleType",
    "RuleOperator",
]
