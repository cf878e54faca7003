"""In-memory storage for development and tests."""

import copy
import logging
from typing import Dict, List, Optional

from ..errors import MetadataConflictError
from ..models import IdentityRecord, SyncMetadata, UsageStats
from .base import CacheStorage, preserve_usage

logger = logging.getLogger(__name__)


class InMemoryCacheStorage(CacheStorage):
    """
    Storage backed by plain dictionaries owned by the instance.

    Every method completes without yielding to the event loop, so each
    operation is atomic with respect to other coroutines.
    """

    backend_type = "memory"

    def __init__(
        self, records_table_name: str = "usercache", metadata_table_name: str = "usersyncmetadata"
    ):
        super().__init__(records_table_name, metadata_table_name)
        self._records: Dict[str, IdentityRecord] = {}
        self._metadata: Optional[SyncMetadata] = None

    async def _load_all_records(self) -> List[IdentityRecord]:
        return [copy.deepcopy(self._records[key]) for key in sorted(self._records)]

    async def _load_record(self, key: str) -> Optional[IdentityRecord]:
        record = self._records.get(key)
        return copy.deepcopy(record) if record is not None else None

    async def _merge_records(self, records: List[IdentityRecord]) -> int:
        for record in records:
            self._records[record.key] = copy.deepcopy(
                preserve_usage(record, self._records.get(record.key))
            )
        return len(records)

    async def _update_usage(self, key: str, usage: UsageStats) -> bool:
        record = self._records.get(key)
        if record is None or record.is_deleted:
            return False
        record.usage = copy.deepcopy(usage)
        return True

    async def _delete_all_records(self) -> int:
        deleted = len(self._records)
        self._records.clear()
        return deleted

    async def _load_metadata(self) -> Optional[SyncMetadata]:
        return copy.deepcopy(self._metadata)

    async def _store_metadata(
        self, metadata: SyncMetadata, expected_version: Optional[int]
    ) -> SyncMetadata:
        current_version = self._metadata.version if self._metadata else 0
        if expected_version is not None and expected_version != current_version:
            raise MetadataConflictError(expected_version, current_version)

        stored = copy.deepcopy(metadata)
        stored.version = current_version + 1
        self._metadata = stored
        return copy.deepcopy(stored)

    async def health_check(self) -> bool:
        return True

    async def delete_tables(self) -> None:
        self._records.clear()
        self._metadata = None
