"""arq worker configuration for collection regeneration.

This module configures the arq worker with:
    - regenerate_collection_task: Regenerate one collection's membership
    - sweep_dirty_collections_task: Cron sweep over dirty collections
    - monitor_queue_depth: Cron job logging queue depth
"""
from arq.connections import RedisSettings, ArqRedis
from arq import cron
from typing import Dict, Any
import structlog
from collection_engine.config import settings, regeneration_settings, configure_logging
from collection_engine.db.base import async_session_maker, engine
from collection_engine.services.membership import CollectionRegenerator

from collection_engine.tasks.regeneration_tasks import (
    regenerate_collection_task,
    sweep_dirty_collections_task,
)

# Configure logging
configure_logging(settings.log_level)
logger = structlog.get_logger(__name__)


def sweep_minutes(interval: int) -> set:
    """Cron minute set for a sweep every ``interval`` minutes."""
    return set(range(0, 60, max(1, interval)))


async def startup(ctx: Dict[str, Any]) -> None:
    """Share one session factory and regenerator across jobs."""
    ctx["session_factory"] = async_session_maker
    ctx["regenerator"] = CollectionRegenerator(async_session_maker, regeneration_settings)
    logger.info(
        "worker_started",
        queue_name=settings.queue_name,
        max_jobs=settings.max_workers,
        sweep_interval_minutes=regeneration_settings.sweep_interval_minutes,
    )


async def shutdown(ctx: Dict[str, Any]) -> None:
    await engine.dispose()
    logger.info("worker_stopped")


async def monitor_queue_depth(ctx: Dict[str, Any]) -> None:
    """Periodic task to log queue depth for monitoring.

    Args:
        ctx: Worker context (contains Redis connection)
    """
    try:
        redis: ArqRedis = ctx.get("redis")
        if not redis:
            logger.warning("monitor_queue_depth_no_redis")
            return

        queue_name = settings.queue_name
        # arq keeps its queue in a sorted set keyed by the queue name
        queue_depth = await redis.zcard(queue_name)

        logger.info(
            "queue_depth_monitor",
            queue_name=queue_name,
            queue_depth=queue_depth,
        )
    except Exception as e:
        logger.error("monitor_queue_depth_error", error=str(e))


async def on_job_end(ctx: Dict[str, Any]) -> None:
    """Hook called after each job ends (success or failure).

    Logs jobs that failed on their last allowed try; their collection stays
    dirty and is picked up by the next sweep.
    """
    try:
        job_try = ctx.get("job_try", 1)
        job_id = ctx.get("job_id", "unknown")
        max_tries = WorkerSettings.max_tries

        if job_try >= max_tries:
            logger.warning(
                "job_final_attempt_finished",
                job_id=job_id,
                job_try=job_try,
                max_tries=max_tries,
            )
        else:
            logger.debug("on_job_end", job_id=job_id, job_try=job_try)
    except Exception as e:
        logger.error("on_job_end_error", error=str(e), ctx_keys=list(ctx.keys()) if ctx else [])


class WorkerSettings:
    """arq worker configuration settings.

    This class is imported by arq CLI:
    `python -m arq collection_engine.worker.WorkerSettings`

    Registered Tasks:
        - regenerate_collection_task: Regenerate one collection
        - sweep_dirty_collections_task: Enqueue regeneration of dirty collections

    Cron Jobs:
        - sweep_dirty_collections_task: Every REGEN_SWEEP_INTERVAL_MINUTES
        - monitor_queue_depth: Every 5 minutes
    """

    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.queue_name
    max_jobs = settings.max_workers
    job_timeout = settings.job_timeout
    keep_result = 3600  # Keep results for 1 hour
    max_tries = 3  # Maximum retry attempts

    functions = [
        regenerate_collection_task,
        sweep_dirty_collections_task,
    ]

    on_startup = startup
    on_shutdown = shutdown
    on_job_end = on_job_end

    cron_jobs = [
        cron(
            sweep_dirty_collections_task,
            minute=sweep_minutes(regeneration_settings.sweep_interval_minutes),
            unique=True,
            run_at_startup=True,
        ),
        cron(monitor_queue_depth, minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}),
    ]
