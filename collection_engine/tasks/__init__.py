"""Queue task definitions for collection membership regeneration.

This module contains arq task functions for:
    - regenerate_collection_task: Regenerate one collection's membership
    - sweep_dirty_collections_task: Fan out regeneration of dirty collections
"""
from collection_engine.tasks.regeneration_tasks import (
    regenerate_collection_task,
    sweep_dirty_collections_task,
    regeneration_job_id,
    emit_metric,
)

__all__ = [
    "regenerate_collection_task",
    "sweep_dirty_collections_task",
    "regeneration_job_id",
    "emit_metric",
]
