"""Pydantic models for queue messages."""
from pydantic import BaseModel, Field, field_validator
from typing import Literal, Optional
from datetime import datetime, timezone
import uuid


class RegenerateCollectionMessage(BaseModel):
    """Message schema for enqueuing a collection regeneration.

    Validated before the job is enqueued to Redis; the fields map onto the
    keyword arguments of regenerate_collection_task.
    """

    collection_id: uuid.UUID = Field(
        ...,
        description="Collection to regenerate"
    )
    trigger: Literal["sweep", "admin", "catalog", "manual"] = Field(
        default="manual",
        description="Origin of the request (logged with the run)"
    )
    task_id: Optional[str] = Field(
        default=None,
        max_length=255,
        description="Optional correlation id for logging"
    )
    enqueued_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="ISO 8601 timestamp when the job was enqueued"
    )

    @field_validator('task_id')
    @classmethod
    def validate_task_id(cls, v: Optional[str]) -> Optional[str]:
        """Normalize blank task ids to None."""
        if v is None or not v.strip():
            return None
        return v.strip()

    def job_kwargs(self) -> dict:
        """Keyword arguments for regenerate_collection_task."""
        return {
            "collection_id": str(self.collection_id),
            "trigger": self.trigger,
            "task_id": self.task_id,
        }

    model_config = {
        "json_schema_extra": {
            "example": {
                "collection_id": "4f7c2a4e-8a39-4d55-9a57-2b0a6b1f0c11",
                "trigger": "admin",
                "task_id": "regen-2026-10-17-001",
                "enqueued_at": "2026-10-17T10:30:00Z"
            }
        }
    }


class SweepDirtyCollectionsMessage(BaseModel):
    """Message schema for an on-demand sweep over dirty collections."""

    batch_size: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum dirty collections picked up by the sweep"
    )
