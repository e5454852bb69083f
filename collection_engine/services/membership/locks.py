"""Per-collection regeneration lock.

The lock lives on the collection row itself (lock_token + lock_expires_at)
and is claimed with a single conditional UPDATE, so it works on any backend
the ORM supports. A claim carries an expiry: a worker that died mid-run
leaves a claim that the next caller may take over once it is past
lock_expires_at.

Foreground membership edits (reorder, pin, unpin) do not claim the lock;
they read it under a row lock and refuse to run while it is held.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional
import uuid

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from collection_engine.config import regeneration_settings
from collection_engine.db.models import Collection
from collection_engine.errors.exceptions import NotFoundError, RegenerationInProgressError
from collection_engine.services.catalog import as_utc

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_lock_token() -> str:
    """Generate an owner token for one regeneration run."""
    return uuid.uuid4().hex


def is_lock_held(collection: Collection, now: Optional[datetime] = None) -> bool:
    """True if the collection carries an unexpired regeneration claim."""
    if collection.lock_token is None or collection.lock_expires_at is None:
        return False
    return as_utc(collection.lock_expires_at) > (now or utcnow())


async def try_claim_collection_lock(
    session_factory: async_sessionmaker,
    collection_id: uuid.UUID,
    token: str,
    ttl_seconds: int,
) -> bool:
    """Try once to claim the regeneration lock of a collection.

    Args:
        session_factory: Session factory (each attempt commits on its own)
        collection_id: Collection to lock
        token: Owner token of the caller
        ttl_seconds: Claim lifetime

    Returns:
        True if the claim succeeded (free or expired lock), False if held

    Raises:
        NotFoundError: If the collection does not exist
    """
    now = utcnow()
    async with session_factory() as session:
        async with session.begin():
            result = await session.execute(
                update(Collection)
                .where(Collection.id == collection_id)
                .where(
                    or_(
                        Collection.lock_token.is_(None),
                        Collection.lock_expires_at.is_(None),
                        Collection.lock_expires_at <= now,
                    )
                )
                .values(lock_token=token, lock_expires_at=now + timedelta(seconds=ttl_seconds))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                logger.debug(
                    "collection_lock_acquired",
                    collection_id=str(collection_id),
                    ttl_seconds=ttl_seconds,
                )
                return True

            holder = (
                await session.execute(
                    select(Collection.lock_token).where(Collection.id == collection_id)
                )
            ).first()

    if holder is None:
        raise NotFoundError(
            f"Collection {collection_id} not found",
            details={"collection_id": str(collection_id)},
        )
    logger.debug(
        "collection_lock_denied",
        collection_id=str(collection_id),
        current_holder=holder[0],
    )
    return False


async def acquire_collection_lock(
    session_factory: async_sessionmaker,
    collection_id: uuid.UUID,
    *,
    ttl_seconds: Optional[int] = None,
    wait_seconds: float = 0.0,
    poll_interval: Optional[float] = None,
) -> str:
    """Claim the regeneration lock, polling for up to wait_seconds.

    Returns:
        The owner token to pass to release_collection_lock

    Raises:
        NotFoundError: If the collection does not exist
        RegenerationInProgressError: If the lock is still held after waiting
    """
    ttl = ttl_seconds if ttl_seconds is not None else regeneration_settings.lock_ttl_seconds
    interval = poll_interval if poll_interval is not None else regeneration_settings.lock_poll_interval_seconds
    token = new_lock_token()

    loop = asyncio.get_running_loop()
    deadline = loop.time() + max(wait_seconds, 0.0)
    while True:
        if await try_claim_collection_lock(session_factory, collection_id, token, ttl):
            return token
        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        await asyncio.sleep(min(interval, remaining))

    logger.info(
        "collection_lock_busy",
        collection_id=str(collection_id),
        waited_seconds=wait_seconds,
    )
    raise RegenerationInProgressError(
        f"Collection {collection_id} is being regenerated, retry later",
        details={"collection_id": str(collection_id), "retriable": True},
    )


async def release_collection_lock(
    session_factory: async_sessionmaker,
    collection_id: uuid.UUID,
    token: str,
) -> bool:
    """Release the lock if it is still owned by token.

    Returns:
        True if released, False if the claim was lost (expired and taken
        over) or the release failed
    """
    try:
        async with session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Collection)
                    .where(Collection.id == collection_id)
                    .where(Collection.lock_token == token)
                    .values(lock_token=None, lock_expires_at=None)
                    .execution_options(synchronize_session=False)
                )
    except SQLAlchemyError as e:
        # The claim still expires after its TTL
        logger.error(
            "collection_lock_release_failed",
            collection_id=str(collection_id),
            error=str(e),
            error_type=type(e).__name__,
        )
        return False

    if result.rowcount == 1:
        logger.debug("collection_lock_released", collection_id=str(collection_id))
        return True
    logger.warning("collection_lock_not_owned", collection_id=str(collection_id))
    return False
