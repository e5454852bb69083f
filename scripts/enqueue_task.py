#!/usr/bin/env python3
"""Helper script for enqueuing regeneration jobs to the Redis queue.

Usage:
    python scripts/enqueue_task.py regenerate 4f7c2a4e-8a39-4d55-9a57-2b0a6b1f0c11
    python scripts/enqueue_task.py sweep --batch-size 20
"""
import asyncio
import argparse
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

script_dir = Path(__file__).parent
project_root = script_dir.parent
sys.path.insert(0, str(project_root))

# Load .env file if it exists (for local development)
env_file = project_root / ".env"
if env_file.exists():
    load_dotenv(env_file)
elif not os.getenv("DATABASE_URL"):
    # Inside Docker the variables come from the environment
    if not os.path.exists("/.dockerenv"):
        print("Error: .env file not found and DATABASE_URL is not set.")
        print(f"   Expected .env file at: {env_file}")
        sys.exit(1)

from arq.connections import RedisSettings, create_pool
from arq import ArqRedis
from pydantic import ValidationError

from collection_engine.config import settings
from collection_engine.models.queue_message import (
    RegenerateCollectionMessage,
    SweepDirtyCollectionsMessage,
)


def _redis_display() -> str:
    url = settings.redis_url
    return url.split('@')[-1] if '@' in url else url


async def enqueue_regeneration(message: RegenerateCollectionMessage) -> Optional[str]:
    """Enqueue a regenerate_collection_task.

    Returns:
        Enqueued job ID
    """
    print(f"Connecting to Redis: {_redis_display()}")
    pool: ArqRedis = await create_pool(RedisSettings.from_dsn(settings.redis_url))

    try:
        job = await pool.enqueue_job(
            "regenerate_collection_task",
            _queue_name=settings.queue_name,
            **message.job_kwargs(),
        )
        print("Regeneration enqueued")
        print(f"   Collection: {message.collection_id}")
        print(f"   Trigger:    {message.trigger}")
        print(f"   Queue:      {settings.queue_name}")
        return job.job_id if job else None
    finally:
        await pool.close()


async def enqueue_sweep(message: SweepDirtyCollectionsMessage) -> Optional[str]:
    """Enqueue a sweep over dirty collections."""
    print(f"Connecting to Redis: {_redis_display()}")
    pool: ArqRedis = await create_pool(RedisSettings.from_dsn(settings.redis_url))

    try:
        job = await pool.enqueue_job(
            "sweep_dirty_collections_task",
            batch_size=message.batch_size,
            _queue_name=settings.queue_name,
        )
        print(f"Sweep enqueued (batch size {message.batch_size})")
        return job.job_id if job else None
    finally:
        await pool.close()


def main():
    parser = argparse.ArgumentParser(
        description="Enqueue collection regeneration jobs to the Redis queue",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Regenerate one collection now
  python scripts/enqueue_task.py regenerate 4f7c2a4e-8a39-4d55-9a57-2b0a6b1f0c11 --trigger admin

  # Sweep dirty collections
  python scripts/enqueue_task.py sweep --batch-size 20
        """
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate and print the job without enqueuing"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    regenerate = subparsers.add_parser("regenerate", parents=[common], help="Regenerate one collection")
    regenerate.add_argument("collection_id", help="Collection UUID")
    regenerate.add_argument(
        "--trigger",
        default="manual",
        choices=["sweep", "admin", "catalog", "manual"],
        help="Origin of the request (default: manual)"
    )
    regenerate.add_argument("--task-id", help="Optional correlation id for logging")

    sweep = subparsers.add_parser("sweep", parents=[common], help="Regenerate dirty collections")
    sweep.add_argument(
        "--batch-size",
        type=int,
        default=10,
        help="Maximum collections per sweep (1-50, default: 10)"
    )

    args = parser.parse_args()

    try:
        if args.command == "regenerate":
            message = RegenerateCollectionMessage(
                collection_id=args.collection_id,
                trigger=args.trigger,
                task_id=args.task_id,
            )
        else:
            message = SweepDirtyCollectionsMessage(batch_size=args.batch_size)
    except ValidationError as e:
        print(f"Invalid arguments: {e}", file=sys.stderr)
        sys.exit(2)

    if args.dry_run:
        print("DRY RUN - Job details:")
        print(f"   {message.model_dump_json()}")
        return

    if args.command == "regenerate":
        job_id = asyncio.run(enqueue_regeneration(message))
    else:
        job_id = asyncio.run(enqueue_sweep(message))
    print(f"   Job ID:     {job_id}")


if __name__ == "__main__":
    main()
