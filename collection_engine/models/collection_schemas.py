"""Pydantic models for collection admin input and read views."""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
import re
import uuid

from collection_engine.db.models import MatchMode, RuleOperator, RuleType, SortOrder

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


class RuleSpec(BaseModel):
    """One rule as submitted by the admin (type + operator + value)."""

    rule_type: RuleType = Field(..., description="Catalog attribute the rule inspects")
    operator: RuleOperator = Field(..., description="Comparison to apply")
    value: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Rule value, interpreted per rule type"
    )

    @field_validator('value')
    @classmethod
    def validate_value(cls, v: str) -> str:
        """Reject whitespace-only values."""
        if not v.strip():
            raise ValueError('value cannot be empty or whitespace')
        return v


class CollectionCreate(BaseModel):
    """Payload for creating a collection."""

    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=255, description="Unique storefront handle")
    description: Optional[str] = None
    image: Optional[str] = Field(default=None, max_length=1024)
    match_mode: MatchMode = MatchMode.ALL
    sort_order: SortOrder = SortOrder.MANUAL
    is_active: bool = True
    seo_title: Optional[str] = Field(default=None, max_length=255)
    seo_description: Optional[str] = None
    rules: List[RuleSpec] = Field(default_factory=list)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate name is not blank."""
        if not v.strip():
            raise ValueError('name cannot be empty or whitespace')
        return v.strip()

    @field_validator('slug')
    @classmethod
    def validate_slug(cls, v: str) -> str:
        """Validate slug format (lowercase words separated by hyphens)."""
        v = v.strip()
        if not SLUG_PATTERN.match(v):
            raise ValueError('slug must be lowercase letters, digits and single hyphens')
        return v

    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "Summer Sale",
                "slug": "summer-sale",
                "match_mode": "all",
                "sort_order": "manual",
                "rules": [
                    {"rule_type": "price", "operator": "less_than", "value": "20"},
                    {"rule_type": "title", "operator": "contains", "value": "linen"}
                ]
            }
        }
    }


class CollectionUpdate(BaseModel):
    """Partial update of a collection's attributes (rules are managed separately)."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    slug: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    image: Optional[str] = Field(default=None, max_length=1024)
    match_mode: Optional[MatchMode] = None
    sort_order: Optional[SortOrder] = None
    is_active: Optional[bool] = None
    seo_title: Optional[str] = Field(default=None, max_length=255)
    seo_description: Optional[str] = None

    @field_validator('slug')
    @classmethod
    def validate_slug(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not SLUG_PATTERN.match(v):
            raise ValueError('slug must be lowercase letters, digits and single hyphens')
        return v


class MembershipEntryView(BaseModel):
    """One membership row in the admin listing."""

    model_config = ConfigDict(from_attributes=True)

    entry_id: uuid.UUID
    item_id: uuid.UUID
    position: int = Field(..., ge=0)
    is_manual: bool


class MembershipPage(BaseModel):
    """Paginated, position-ordered membership listing."""

    collection_id: uuid.UUID
    total: int = Field(..., ge=0, description="Total membership count")
    offset: int = Field(..., ge=0)
    limit: int = Field(..., ge=1)
    entries: List[MembershipEntryView] = Field(default_factory=list)


class CollectionStatus(BaseModel):
    """Regeneration status of a collection as shown in the admin."""

    collection_id: uuid.UUID
    dirty: bool
    dirty_reason: Optional[str] = None
    invalidation_seq: int = 0
    last_regenerated_at: Optional[datetime] = None
    last_error: Optional[str] = None
    regenerating: bool = Field(
        default=False,
        description="True while an unexpired regeneration lock is held"
    )
    member_count: int = 0


class PublishedItem(BaseModel):
    """One item of a published collection."""

    item_id: uuid.UUID
    position: int
    title: str
    sku: str
    price: Decimal
    compare_at_price: Optional[Decimal] = None


class PublishedMembership(BaseModel):
    """Storefront view of a collection: metadata plus one page of items."""

    collection_id: uuid.UUID
    slug: str
    name: str
    description: Optional[str] = None
    image: Optional[str] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    total: int = 0
    offset: int = 0
    limit: int = 0
    items: List[PublishedItem] = Field(default_factory=list)
