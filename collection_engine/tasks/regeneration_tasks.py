"""Queue tasks for collection membership regeneration.

This module implements the worker side of regeneration:
    - regenerate_collection_task: Regenerate one collection
    - sweep_dirty_collections_task: Cron sweep that fans out one
      regenerate_collection_task per dirty collection
"""
import time
import uuid
from typing import Any, Dict, Optional

from arq.connections import ArqRedis
import structlog

from collection_engine.config import regeneration_settings
from collection_engine.db.base import async_session_maker
from collection_engine.errors.exceptions import (
    NotFoundError,
    RegenerationError,
    RegenerationInProgressError,
)
from collection_engine.services.membership import CollectionRegenerator, dirty_collection_ids

logger = structlog.get_logger(__name__)


# ============================================================================
# Observability Metrics Logging
# ============================================================================

def emit_metric(metric_name: str, value: float, labels: Dict[str, str] = None) -> None:
    """Emit a metric event as a structured log line.

    Args:
        metric_name: Name of the metric (e.g., "membership_changes_total")
        value: Numeric value of the metric
        labels: Optional labels/tags for the metric
    """
    labels = labels or {}
    logger.info(
        "metric",
        metric_name=metric_name,
        metric_value=value,
        **labels,
    )


def emit_regeneration_duration_seconds(duration: float, trigger: str) -> None:
    emit_metric("regeneration_duration_seconds", duration, {"trigger": trigger})


def emit_membership_changes_total(count: int, change_type: str) -> None:
    """Emit metric for membership rows changed by regeneration.

    Args:
        count: Number of items
        change_type: added, removed or kept
    """
    emit_metric("membership_changes_total", count, {"change_type": change_type})


def emit_regenerations_total(status: str) -> None:
    emit_metric("regenerations_total", 1, {"status": status})


def emit_dirty_collections(count: int) -> None:
    emit_metric("dirty_collections", count)


def regeneration_job_id(collection_id: Any, invalidation_seq: int) -> str:
    """Deterministic arq job id for one invalidation of a collection.

    The same invalidation is never queued twice; a later invalidation gets a
    new id and is queued even if an older job result is still kept.
    """
    return f"regenerate:{collection_id}:{invalidation_seq}"


def _regenerator(ctx: Dict[str, Any]) -> CollectionRegenerator:
    return ctx.get("regenerator") or CollectionRegenerator(ctx.get("session_factory"))


async def regenerate_collection_task(
    ctx: Dict[str, Any],
    collection_id: str,
    trigger: str = "sweep",
    task_id: Optional[str] = None,
    **kwargs
) -> Dict[str, Any]:
    """Regenerate the membership of one collection.

    Args:
        ctx: Worker context (contains Redis connection and the regenerator)
        collection_id: Collection UUID as a string
        trigger: Origin of the request (sweep, admin, catalog)
        task_id: Optional correlation id for logging

    Returns:
        Dictionary with status (success, skipped, not_found, error) and the
        regeneration summary on success

    Note:
        A held lock is reported as skipped, not retried: the collection
        stays dirty and the next sweep picks it up again.
    """
    task_id = task_id or ctx.get("job_id") or f"regenerate-{collection_id}"
    log = logger.bind(task_id=task_id, collection_id=collection_id, trigger=trigger)

    try:
        collection_uuid = uuid.UUID(str(collection_id))
    except ValueError:
        log.warning("invalid_collection_id")
        return {
            "task_id": task_id,
            "collection_id": collection_id,
            "status": "error",
            "error": "invalid collection_id",
        }

    log.info("regenerate_collection_task_started")
    start_time = time.time()

    try:
        summary = await _regenerator(ctx).regenerate(collection_uuid, trigger=trigger)
    except RegenerationInProgressError as e:
        log.info("regenerate_collection_task_skipped", reason=e.message)
        emit_regenerations_total("skipped")
        return {
            "task_id": task_id,
            "collection_id": collection_id,
            "status": "skipped",
            "reason": "locked",
        }
    except NotFoundError:
        log.info("regenerate_collection_task_collection_gone")
        emit_regenerations_total("not_found")
        return {
            "task_id": task_id,
            "collection_id": collection_id,
            "status": "not_found",
        }
    except RegenerationError as e:
        duration = time.time() - start_time
        log.error(
            "regenerate_collection_task_failed",
            error=e.message,
            duration_seconds=round(duration, 3),
        )
        emit_regenerations_total("error")
        return {
            "task_id": task_id,
            "collection_id": collection_id,
            "status": "error",
            "error": e.message,
        }

    emit_regenerations_total("success")
    emit_regeneration_duration_seconds(summary.duration_seconds, trigger)
    emit_membership_changes_total(summary.added, "added")
    emit_membership_changes_total(summary.removed, "removed")
    emit_membership_changes_total(summary.kept, "kept")

    log.info("regenerate_collection_task_completed", total=summary.total, still_dirty=summary.still_dirty)
    return {
        "task_id": task_id,
        "status": "success",
        **summary.to_dict(),
    }


async def sweep_dirty_collections_task(
    ctx: Dict[str, Any],
    batch_size: Optional[int] = None,
    **kwargs
) -> Dict[str, Any]:
    """Pick up dirty collections and regenerate them.

    With a Redis connection in the context, one regenerate_collection_task
    is enqueued per dirty collection so the work spreads over the worker
    pool. Without one, the collections are regenerated inline, one after
    the other.

    Args:
        ctx: Worker context
        batch_size: Maximum collections per sweep (default from settings,
            clamped to 1..50)

    Returns:
        Dictionary with counts of enqueued / already queued collections, or
        the inline sweep report
    """
    limit = batch_size if batch_size is not None else regeneration_settings.sweep_batch_size
    limit = max(1, min(limit, 50))
    log = logger.bind(batch_size=limit)

    redis: Optional[ArqRedis] = ctx.get("redis")
    if redis is None:
        log.info("sweep_running_inline")
        report = await _regenerator(ctx).regenerate_dirty(limit)
        return {"status": "success", "mode": "inline", **report.to_dict()}

    session_factory = ctx.get("session_factory") or async_session_maker
    candidates = await dirty_collection_ids(session_factory, limit)
    emit_dirty_collections(len(candidates))

    enqueued = 0
    already_queued = 0
    for collection_id, invalidation_seq in candidates:
        job = await redis.enqueue_job(
            "regenerate_collection_task",
            collection_id=str(collection_id),
            trigger="sweep",
            _job_id=regeneration_job_id(collection_id, invalidation_seq),
        )
        if job is None:
            already_queued += 1
        else:
            enqueued += 1

    log.info(
        "sweep_dirty_collections_completed",
        candidates=len(candidates),
        enqueued=enqueued,
        already_queued=already_queued,
    )
    return {
        "status": "success",
        "mode": "enqueue",
        "candidates": len(candidates),
        "enqueued": enqueued,
        "already_queued": already_queued,
    }
