"""Storage interface for the directory cache."""

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..models import IdentityRecord, SyncMetadata, UsageStats, utc_now

logger = logging.getLogger(__name__)


class CacheStorage(ABC):
    """
    Abstract base class for cache storage.

    A storage instance owns one records table and one metadata table. It holds
    no sync policy: the manager decides what to write and when. Implementations
    provide the raw table operations below; the public async API on this class
    applies the shared rules (tombstone hiding, usage preservation and timestamp
    stamping) on top of them.
    """

    backend_type: str = "unknown"

    def __init__(self, records_table_name: str, metadata_table_name: str):
        self.records_table_name = records_table_name
        self.metadata_table_name = metadata_table_name

    # Raw table operations

    @abstractmethod
    async def _load_all_records(self) -> List[IdentityRecord]:
        """Return every stored record, tombstones included."""

    @abstractmethod
    async def _load_record(self, key: str) -> Optional[IdentityRecord]:
        """Return the stored record for ``key``, tombstoned or not."""

    @abstractmethod
    async def _merge_records(self, records: List[IdentityRecord]) -> int:
        """
        Insert or replace records by key.

        Identity fields are replaced wholesale. When a record carries no usage
        block, the usage block of the stored record (if any) is kept.
        """

    @abstractmethod
    async def _update_usage(self, key: str, usage: UsageStats) -> bool:
        """
        Replace the usage block of an existing, non-tombstoned record.

        Returns:
            False if no such record exists; nothing is created
        """

    @abstractmethod
    async def _delete_all_records(self) -> int:
        """Delete every record and return how many were removed."""

    @abstractmethod
    async def _load_metadata(self) -> Optional[SyncMetadata]:
        """Return the stored metadata, or None if it was never written."""

    @abstractmethod
    async def _store_metadata(
        self, metadata: SyncMetadata, expected_version: Optional[int]
    ) -> SyncMetadata:
        """
        Replace the stored metadata.

        Raises:
            MetadataConflictError: If ``expected_version`` is given and differs
                from the stored version (0 when absent)
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the storage is reachable."""

    @abstractmethod
    async def delete_tables(self) -> None:
        """Drop both tables of this instance."""

    async def aclose(self) -> None:
        """Release client handles held by the storage."""

    async def __aenter__(self) -> "CacheStorage":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # Public API

    async def get_all(self) -> List[IdentityRecord]:
        """Return all records that are not tombstoned."""
        records = await self._load_all_records()
        return [record for record in records if not record.is_deleted]

    async def get_by_key(self, key: str) -> Optional[IdentityRecord]:
        """Return the record for ``key``; tombstoned records read as None."""
        record = await self._load_record(key)
        if record is None or record.is_deleted:
            return None
        return record

    async def upsert(self, record: IdentityRecord, synced_at: Optional[datetime] = None) -> None:
        """Insert or replace a single record."""
        await self.upsert_many([record], synced_at=synced_at)

    async def upsert_many(
        self, records: Iterable[IdentityRecord], synced_at: Optional[datetime] = None
    ) -> int:
        """
        Insert or replace records by principal name, stamping ``last_synced``.

        When the same key appears more than once, the last occurrence wins.

        Returns:
            Number of records written
        """
        stamp = synced_at or utc_now()
        latest: Dict[str, IdentityRecord] = {}
        for record in records:
            latest[record.key] = replace(record, last_synced=stamp)

        if not latest:
            return 0

        written = await self._merge_records(list(latest.values()))
        logger.debug(f"Upserted {written} records into {self.records_table_name}")
        return written

    async def clear_all(self) -> int:
        """Delete every record, tombstones included. Metadata is untouched."""
        deleted = await self._delete_all_records()
        logger.info(f"Cleared {deleted} records from {self.records_table_name}")
        return deleted

    async def apply_stats_overlay(
        self, stats: Dict[str, UsageStats], stamped_at: Optional[datetime] = None
    ) -> int:
        """
        Merge usage blocks into matching records.

        Keys without a live record are skipped; no record is ever created.

        Returns:
            Number of records updated
        """
        stamp = stamped_at or utc_now()
        updated = 0
        skipped = 0
        for key, usage in stats.items():
            if await self._update_usage(key, replace(usage, last_stats_update=stamp)):
                updated += 1
            else:
                skipped += 1
                logger.debug(f"No cached record for {key}, skipping usage stats")

        logger.info(
            f"Applied usage stats to {updated} records in {self.records_table_name} "
            f"({skipped} unmatched)"
        )
        return updated

    async def get_metadata(self) -> SyncMetadata:
        """Return the sync metadata; a missing row reads as the zero value."""
        metadata = await self._load_metadata()
        return metadata if metadata is not None else SyncMetadata()

    async def set_metadata(
        self, metadata: SyncMetadata, expected_version: Optional[int] = None
    ) -> SyncMetadata:
        """
        Replace the sync metadata.

        Args:
            metadata: New metadata; its ``version`` field is ignored
            expected_version: Version the caller read. None writes unconditionally.

        Returns:
            The metadata as stored, carrying its new version

        Raises:
            MetadataConflictError: If the stored version differs from ``expected_version``
        """
        stored = await self._store_metadata(metadata, expected_version)
        logger.debug(
            f"Stored sync metadata v{stored.version} in {self.metadata_table_name} "
            f"(status={stored.last_sync_status.value})"
        )
        return stored

    async def count(self, include_deleted: bool = False) -> int:
        """Count stored records."""
        records = await self._load_all_records()
        if include_deleted:
            return len(records)
        return sum(1 for record in records if not record.is_deleted)


def preserve_usage(record: IdentityRecord, existing: Optional[IdentityRecord]) -> IdentityRecord:
    """Carry the usage block of ``existing`` onto ``record`` when it has none."""
    if record.usage is None and existing is not None and existing.usage is not None:
        return replace(record, usage=existing.usage)
    return record
