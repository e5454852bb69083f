"""Collection membership regeneration.

CollectionRegenerator recomputes one collection's membership from its rules:

1. Claim the collection's regeneration lock (locks.py).
2. In one transaction: read the collection, its rules and its current rows;
   evaluate the rules over the eligible item snapshots; plan the three-way
   diff (diff.py); write the plan (store.py).
3. Before commit, re-read the collection row FOR UPDATE: a collection
   deleted meanwhile aborts the run, a lost lock aborts the run.
4. Stamp last_regenerated_at and clear ``dirty`` only if invalidation_seq is
   unchanged since step 2, so an invalidation that lands mid-run is not lost.

A failed run rolls back, keeps the collection dirty and records last_error
in a separate transaction.
"""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional
import time
import uuid

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from collection_engine.config import RegenerationSettings, regeneration_settings
from collection_engine.db.base import async_session_maker
from collection_engine.db.models import Collection, CollectionRule, SortOrder
from collection_engine.errors.exceptions import (
    CollectionEngineError,
    ConflictError,
    NotFoundError,
    RegenerationError,
    RegenerationInProgressError,
)
from collection_engine.services.catalog import load_existing_product_ids, load_item_snapshots
from collection_engine.services.membership.diff import plan_membership
from collection_engine.services.membership.locks import (
    acquire_collection_lock,
    release_collection_lock,
    utcnow,
)
from collection_engine.services.membership.store import MembershipStore
from collection_engine.services.rules import RuleEvaluator

logger = structlog.get_logger(__name__)


@dataclass
class RegenerationSummary:
    """Outcome of one successful regeneration.

    Attributes:
        collection_id: Regenerated collection
        added: Newly matching automatic items
        removed: Automatic items that no longer match (plus dropped pins)
        kept: Automatic items that still match
        manual: Pinned items in the final membership
        total: Final membership size
        still_dirty: An invalidation arrived while the run was in progress
        duration_seconds: Wall time of the run
    """
    collection_id: uuid.UUID
    added: int = 0
    removed: int = 0
    kept: int = 0
    manual: int = 0
    total: int = 0
    still_dirty: bool = False
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["collection_id"] = str(self.collection_id)
        return data


@dataclass
class SweepReport:
    """Outcome of one pass over dirty collections."""
    regenerated: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "regenerated": list(self.regenerated),
            "skipped": list(self.skipped),
            "failed": dict(self.failed),
        }


async def dirty_collection_ids(session_factory: async_sessionmaker, limit: int) -> List[tuple]:
    """Return up to ``limit`` (collection_id, invalidation_seq) pairs needing regeneration.

    Oldest regeneration first; never-regenerated collections come first.
    """
    async with session_factory() as session:
        result = await session.execute(
            select(Collection.id, Collection.invalidation_seq)
            .where(Collection.dirty.is_(True))
            .order_by(Collection.last_regenerated_at.is_not(None), Collection.last_regenerated_at, Collection.id)
            .limit(limit)
        )
        return [(row[0], row[1]) for row in result.all()]


class CollectionRegenerator:
    """Recomputes collection memberships from their rules.

    Args:
        session_factory: Async session factory (defaults to the application's)
        settings: Regeneration settings (lock TTL, wait, batch size)
        evaluator: Rule evaluator instance
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        settings: Optional[RegenerationSettings] = None,
        evaluator: Optional[RuleEvaluator] = None,
    ):
        self.session_factory = session_factory or async_session_maker
        self.settings = settings or regeneration_settings
        self.evaluator = evaluator or RuleEvaluator()

    async def regenerate(
        self,
        collection_id: uuid.UUID,
        *,
        wait_seconds: float = 0.0,
        trigger: str = "manual",
    ) -> RegenerationSummary:
        """Recompute a collection's membership.

        Args:
            collection_id: Collection to regenerate
            wait_seconds: How long to wait for a held lock before giving up
            trigger: Free-form origin of the run, logged ("admin", "sweep", ...)

        Returns:
            RegenerationSummary

        Raises:
            NotFoundError: Collection does not exist (or was deleted mid-run)
            RegenerationInProgressError: Another run holds the lock
            RegenerationError: The run failed and was rolled back
        """
        log = logger.bind(collection_id=str(collection_id), trigger=trigger)
        token = await acquire_collection_lock(
            self.session_factory,
            collection_id,
            ttl_seconds=self.settings.lock_ttl_seconds,
            wait_seconds=wait_seconds,
            poll_interval=self.settings.lock_poll_interval_seconds,
        )
        start_time = time.monotonic()
        log.info("regeneration_started")

        try:
            summary = await self._run(collection_id, token)
        except (NotFoundError, ConflictError):
            raise
        except Exception as e:
            log.error(
                "regeneration_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._record_failure(collection_id, e)
            raise RegenerationError(
                f"Regeneration of collection {collection_id} failed: {e}",
                details={"collection_id": str(collection_id), "error_type": type(e).__name__},
            ) from e
        finally:
            await release_collection_lock(self.session_factory, collection_id, token)

        summary.duration_seconds = round(time.monotonic() - start_time, 3)
        log.info("regeneration_completed", **{k: v for k, v in summary.to_dict().items() if k != "collection_id"})
        return summary

    async def _run(self, collection_id: uuid.UUID, token: str) -> RegenerationSummary:
        async with self.session_factory() as session:
            async with session.begin():
                collection = await session.get(Collection, collection_id)
                if collection is None:
                    raise NotFoundError(
                        f"Collection {collection_id} not found",
                        details={"collection_id": str(collection_id)},
                    )
                seen_seq = collection.invalidation_seq
                match_mode = collection.match_mode
                sort_order = collection.sort_order

                rules_result = await session.execute(
                    select(CollectionRule)
                    .where(CollectionRule.collection_id == collection_id)
                    .order_by(CollectionRule.position)
                )
                rules = list(rules_result.scalars().all())

                existing = await MembershipStore.load_entries(session, collection_id)
                manual_ids = [e.item_id for e in existing if e.is_manual]
                live_manual_ids = await load_existing_product_ids(session, manual_ids)

                eligible = await load_item_snapshots(session, eligible_only=True) if rules else []
                matched = self.evaluator.evaluate_batch(rules, match_mode, eligible)

                catalog = {item.id: item for item in eligible}
                pinned_missing = [i for i in live_manual_ids if i not in catalog]
                if pinned_missing and sort_order != SortOrder.MANUAL:
                    # Pinned items outside the eligible set still need sort keys
                    for item in await load_item_snapshots(session, eligible_only=False, product_ids=pinned_missing):
                        catalog[item.id] = item

                plan = plan_membership(existing, matched, sort_order, catalog, live_manual_ids)

                # Re-check the collection under a row lock before writing
                current = (
                    await session.execute(
                        select(Collection)
                        .where(Collection.id == collection_id)
                        .with_for_update()
                        .execution_options(populate_existing=True)
                    )
                ).scalar_one_or_none()
                if current is None:
                    raise NotFoundError(
                        f"Collection {collection_id} was deleted during regeneration",
                        details={"collection_id": str(collection_id)},
                    )
                if current.lock_token != token:
                    raise RegenerationInProgressError(
                        f"Regeneration lock of collection {collection_id} was taken over",
                        details={"collection_id": str(collection_id), "retriable": True},
                    )

                await MembershipStore.write_plan(session, collection_id, plan)

                current.last_regenerated_at = utcnow()
                current.last_error = None
                await session.flush()

                cleared = await session.execute(
                    update(Collection)
                    .where(Collection.id == collection_id)
                    .where(Collection.invalidation_seq == seen_seq)
                    .values(dirty=False, dirty_reason=None)
                    .execution_options(synchronize_session=False)
                )
                still_dirty = cleared.rowcount == 0

        return RegenerationSummary(
            collection_id=collection_id,
            added=len(plan.added),
            removed=len(plan.removed) + len(plan.dropped_manual),
            kept=len(plan.kept),
            manual=sum(1 for e in plan.entries if e.is_manual),
            total=plan.total,
            still_dirty=still_dirty,
        )

    async def _record_failure(self, collection_id: uuid.UUID, error: Exception) -> None:
        """Keep the collection dirty and store the failure message."""
        message = f"{type(error).__name__}: {error}"[:2000]
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await session.execute(
                        update(Collection)
                        .where(Collection.id == collection_id)
                        .values(dirty=True, last_error=message)
                        .execution_options(synchronize_session=False)
                    )
        except SQLAlchemyError as e:
            logger.error(
                "regeneration_failure_not_recorded",
                collection_id=str(collection_id),
                error=str(e),
                error_type=type(e).__name__,
            )

    async def regenerate_dirty(self, batch_size: Optional[int] = None) -> SweepReport:
        """Regenerate dirty collections one after the other.

        A collection whose lock is held is skipped; a failing collection is
        recorded and the sweep moves on.

        Args:
            batch_size: Maximum collections to process (clamped to 1..50)
        """
        limit = batch_size if batch_size is not None else self.settings.sweep_batch_size
        limit = max(1, min(limit, 50))
        report = SweepReport()

        candidates = await dirty_collection_ids(self.session_factory, limit)
        logger.info("dirty_sweep_started", candidates=len(candidates), batch_size=limit)

        for collection_id, _ in candidates:
            key = str(collection_id)
            try:
                await self.regenerate(collection_id, trigger="sweep")
                report.regenerated.append(key)
            except RegenerationInProgressError:
                report.skipped.append(key)
            except NotFoundError:
                report.skipped.append(key)
            except CollectionEngineError as e:
                report.failed[key] = e.message

        logger.info(
            "dirty_sweep_completed",
            regenerated=len(report.regenerated),
            skipped=len(report.skipped),
            failed=len(report.failed),
        )
        return report
