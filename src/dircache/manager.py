"""
Cache manager orchestrating synchronization, expiry and the usage overlay.

The manager is the only component holding sync policy. All state lives in
storage: the manager reads the sync metadata at the start of every decision
and writes it back at the end of every attempt.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, List, Optional

from .config import CacheSettings
from .errors import CacheConfigurationError, InvalidCursorError, MetadataConflictError
from .loaders.base import DirectoryDataLoader, StatsLoader
from .models import IdentityRecord, LoadResult, SyncMetadata, SyncStatus, utc_now
from .storage.base import CacheStorage

logger = logging.getLogger(__name__)


@dataclass
class StatsUpdateResult:
    """Outcome of a usage statistics refresh."""

    status: str  # "skipped", "failed", "updated"
    updated_count: int = 0
    report_count: int = 0
    error_message: Optional[str] = None


@dataclass
class SyncResult:
    """Outcome of a successful synchronization."""

    full_sync: bool
    record_count: int
    metadata: SyncMetadata


class UserCacheManager:
    """
    Keeps a local replica of the directory fresh.

    Reads trigger a sync when the last delta sync is older than the cache
    expiration. A sync is full when no cursor is stored or the last full sync
    is older than the full sync interval, and incremental otherwise.
    """

    def __init__(
        self,
        loader: DirectoryDataLoader,
        storage: CacheStorage,
        settings: Optional[CacheSettings] = None,
        stats_loader: Optional[StatsLoader] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.loader = loader
        self.storage = storage
        self.settings = settings or CacheSettings(backend_type="memory")
        self.stats_loader = stats_loader
        self._clock = clock

    async def __aenter__(self) -> "UserCacheManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Release loader and storage handles."""
        await self.loader.aclose()
        if self.stats_loader is not None:
            await self.stats_loader.aclose()
        await self.storage.aclose()

    def is_stale(self, metadata: SyncMetadata, now: Optional[datetime] = None) -> bool:
        """Whether reads should trigger a sync."""
        now = now or self._clock()
        return (
            metadata.last_delta_sync is None
            or now - metadata.last_delta_sync > self.settings.cache_expiration
        )

    def needs_full_sync(self, metadata: SyncMetadata, now: Optional[datetime] = None) -> bool:
        """Whether the next sync has to be a full load."""
        now = now or self._clock()
        return (
            not metadata.cursor
            or metadata.last_full_sync is None
            or now - metadata.last_full_sync > self.settings.full_sync_interval
        )

    async def get_all_cached(
        self, force_refresh: bool = False, skip_auto_sync: bool = False
    ) -> List[IdentityRecord]:
        """
        Return the cached records, syncing first if the cache is stale.

        Args:
            force_refresh: Sync even when the cache is fresh
            skip_auto_sync: Never sync; return whatever is stored
        """
        metadata = await self.storage.get_metadata()
        needs_sync = force_refresh or self.is_stale(metadata)

        if needs_sync and not skip_auto_sync:
            await self.sync()
        elif needs_sync:
            logger.debug("Cache is stale but auto sync is disabled")

        records = await self.storage.get_all()
        if self.settings.filter_inactive_on_read:
            records = [record for record in records if record.is_active_member()]
        return records

    async def get_cached_by_key(self, key: str) -> Optional[IdentityRecord]:
        """Look up one record. Never syncs."""
        return await self.storage.get_by_key(key)

    async def get_sync_metadata(self) -> SyncMetadata:
        return await self.storage.get_metadata()

    async def _commit_metadata(
        self, base: SyncMetadata, apply: Callable[[SyncMetadata], SyncMetadata]
    ) -> SyncMetadata:
        """
        Write ``apply(base)`` guarded by the version of ``base``.

        On a conflict the metadata is re-read and ``apply`` is replayed once on
        the fresh copy; a second conflict propagates.
        """
        try:
            return await self.storage.set_metadata(apply(base), expected_version=base.version)
        except MetadataConflictError as e:
            logger.warning(f"{e}; re-reading sync metadata and retrying once")
            current = await self.storage.get_metadata()
            return await self.storage.set_metadata(apply(current), expected_version=current.version)

    async def _resolve_removals(self, result: LoadResult) -> List[IdentityRecord]:
        """Turn removals reported by id into tombstones of the stored records."""
        if not result.removed_ids:
            return []

        returned = {record.key for record in result.records}
        stored_by_id = {record.id: record for record in await self.storage.get_all()}
        tombstones = []
        for record_id in result.removed_ids:
            record = stored_by_id.get(record_id)
            if record is None:
                logger.debug(f"Removed directory entry {record_id} is not cached, ignoring")
                continue
            if record.key not in returned:
                tombstones.append(replace(record, is_deleted=True))
        return tombstones

    async def sync(self, force_full: bool = False) -> SyncResult:
        """
        Synchronize the cache with the directory.

        Args:
            force_full: Run a full load even if a delta would do

        Raises:
            DirectoryLoaderError: If loading fails; the failure is recorded in
                the metadata before it is re-raised
        """
        metadata = await self.storage.get_metadata()
        full_sync = force_full or self.needs_full_sync(metadata)

        marker = await self._commit_metadata(
            metadata, lambda current: replace(current, last_sync_status=SyncStatus.IN_PROGRESS)
        )
        full_sync = full_sync or not marker.cursor

        try:
            if full_sync:
                logger.info("Performing full user sync")
                result = await self.loader.load_all()
            else:
                logger.info("Performing delta sync")
                result = await self.loader.load_changes(marker.cursor)

            records = result.records + await self._resolve_removals(result)
            finished_at = self._clock()
            await self.storage.upsert_many(records, synced_at=finished_at)
        except (Exception, asyncio.CancelledError) as e:
            logger.error(f"Error during user sync: {e}")
            await self._record_failure(marker, e)
            raise

        def succeed(current: SyncMetadata) -> SyncMetadata:
            cursor = result.cursor if (result.cursor or full_sync) else current.cursor
            return replace(
                current,
                cursor=cursor,
                last_full_sync=finished_at if full_sync else current.last_full_sync,
                last_delta_sync=finished_at,
                last_sync_status=SyncStatus.SUCCESS,
                last_sync_error=None,
                last_sync_count=len(records),
            )

        stored = await self._commit_metadata(marker, succeed)
        logger.info(
            f"User sync completed successfully: {len(records)} records processed "
            f"({'full' if full_sync else 'delta'})"
        )
        return SyncResult(full_sync=full_sync, record_count=len(records), metadata=stored)

    async def _record_failure(self, base: SyncMetadata, error: BaseException) -> None:
        """Store the failed status; cursor and sync times keep their previous values."""
        clear_cursor = isinstance(error, InvalidCursorError) and self.settings.auto_clear_on_invalid_cursor
        if clear_cursor:
            logger.warning("Cursor was rejected, clearing it so the next sync is a full load")

        def fail(current: SyncMetadata) -> SyncMetadata:
            return replace(
                current,
                cursor=None if clear_cursor else current.cursor,
                last_sync_status=SyncStatus.FAILED,
                last_sync_error=str(error) or type(error).__name__,
            )

        try:
            await self._commit_metadata(base, fail)
        except Exception as e:
            logger.error(f"Failed to record sync failure in metadata: {e}")

    async def update_stats(self, force: bool = False) -> StatsUpdateResult:
        """
        Refresh the usage overlay when it is older than the refresh interval.

        Args:
            force: Refresh regardless of the interval

        Returns:
            StatsUpdateResult describing what happened
        """
        if self.stats_loader is None:
            raise CacheConfigurationError("No statistics loader configured")

        metadata = await self.storage.get_metadata()
        now = self._clock()
        if (
            not force
            and metadata.last_stats_update is not None
            and now - metadata.last_stats_update < self.settings.stats_refresh_interval
        ):
            logger.info("Usage stats are still fresh, skipping update")
            return StatsUpdateResult(status="skipped")

        logger.info("Fetching usage statistics")
        result = await self.stats_loader.fetch_usage_stats()

        if not result.success:
            logger.warning(
                f"Failed to fetch usage stats: {result.error_message} (Status: {result.status_code})"
            )
            return StatsUpdateResult(status="failed", error_message=result.error_message)

        updated = 0
        if result.records:
            updated = await self.storage.apply_stats_overlay(result.by_key(), stamped_at=now)
            logger.info(f"Updated usage stats in storage for {updated} records")
        else:
            logger.warning("Usage report contained no rows")

        await self._commit_metadata(
            metadata, lambda current: replace(current, last_stats_update=now)
        )
        return StatsUpdateResult(
            status="updated", updated_count=updated, report_count=len(result.records)
        )

    async def clear(self) -> int:
        """Remove every record and reset the metadata; the next sync is full."""
        logger.info("Clearing user cache")
        deleted = await self.storage.clear_all()
        await self.storage.set_metadata(SyncMetadata())
        logger.info(f"Cleared {deleted} records from cache")
        return deleted
