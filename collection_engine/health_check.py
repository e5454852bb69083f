"""Health check script for the regeneration worker.

Exit code 0 when Redis and the database are reachable and the collections
schema is in place; 1 otherwise. Also prints the dirty-collection backlog
and the number of expired regeneration locks.
"""
import sys
import asyncio
from datetime import datetime, timezone
from redis.asyncio import Redis
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import create_async_engine
from collection_engine.config import settings
from collection_engine.db.base import engine_options
from collection_engine.db.models import Collection


async def check_redis_connection() -> bool:
    """Check if Redis connection is available."""
    try:
        redis = Redis.from_url(
            settings.redis_url,
            decode_responses=True
        )
        await redis.ping()
        await redis.aclose()
        return True
    except Exception as e:
        print(f"Redis health check failed: {e}", file=sys.stderr)
        return False


async def check_database() -> bool:
    """Check the database and report the regeneration backlog.

    Returns:
        True if the collections table can be queried, False otherwise
    """
    health_engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))
    try:
        now = datetime.now(timezone.utc)
        async with health_engine.connect() as conn:
            dirty = await conn.scalar(
                select(func.count()).select_from(Collection).where(Collection.dirty.is_(True))
            )
            stale_locks = await conn.scalar(
                select(func.count())
                .select_from(Collection)
                .where(Collection.lock_token.is_not(None))
                .where(Collection.lock_expires_at <= now)
            )
        print(f"Dirty collections: {dirty}, expired regeneration locks: {stale_locks}")
        return True
    except Exception as e:
        print(f"Database health check failed: {e}", file=sys.stderr)
        return False
    finally:
        await health_engine.dispose()


async def main() -> int:
    """Run health checks and return exit code."""
    redis_ok = await check_redis_connection()
    database_ok = await check_database()

    if not redis_ok:
        print("Health check failed: Redis connection unavailable", file=sys.stderr)
        return 1

    if not database_ok:
        print("Health check failed: Database unavailable or schema missing", file=sys.stderr)
        return 1

    print("Health check passed: All services available")
    return 0


# Only execute when run directly as a script
if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
