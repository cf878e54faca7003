"""Filesystem storage keeping one JSON document per record."""

import asyncio
import json
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote, unquote

import aiofiles
import aiofiles.os

from ..errors import CacheBackendError, MetadataConflictError
from ..models import IdentityRecord, SyncMetadata, UsageStats
from .base import CacheStorage, preserve_usage

logger = logging.getLogger(__name__)

METADATA_DOCUMENT = "UserDeltaSync.json"
RECORD_SUFFIX = ".json"


class FileCacheStorage(CacheStorage):
    """
    Storage under a local directory.

    Layout::

        <cache_dir>/<records_table>/<quoted principal name>.json
        <cache_dir>/<metadata_table>/UserDeltaSync.json

    Every document is written to a temporary file and renamed into place, so
    readers never observe a partially written record.

    File names keep the case of the principal name, so on a case-insensitive
    filesystem two names differing only in case share one document.
    """

    backend_type = "file"

    def __init__(
        self,
        cache_dir: str,
        records_table_name: str = "usercache",
        metadata_table_name: str = "usersyncmetadata",
    ):
        super().__init__(records_table_name, metadata_table_name)
        self.cache_dir = Path(cache_dir).expanduser()
        self.records_dir = self.cache_dir / records_table_name
        self.metadata_dir = self.cache_dir / metadata_table_name
        self._records_lock = asyncio.Lock()
        self._metadata_lock = asyncio.Lock()

        logger.debug(f"Initialized file storage at {self.cache_dir}")

    def _record_path(self, key: str) -> Path:
        return self.records_dir / f"{quote(key, safe='@.-_')}{RECORD_SUFFIX}"

    @property
    def _metadata_path(self) -> Path:
        return self.metadata_dir / METADATA_DOCUMENT

    async def _write_json(self, path: Path, data: Dict[str, Any]) -> None:
        """Write a JSON document atomically using a temporary file."""
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(data, indent=2, sort_keys=True))
            await aiofiles.os.replace(str(temp_path), str(path))
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise CacheBackendError(
                f"Failed to write {path.name}", backend_type=self.backend_type, original_error=e
            )

    async def _read_json(self, path: Path) -> Optional[Dict[str, Any]]:
        """Read a JSON document, returning None if it does not exist."""
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                content = await f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CacheBackendError(
                f"Failed to read {path.name}", backend_type=self.backend_type, original_error=e
            )
        return json.loads(content)

    async def _read_record_file(self, path: Path) -> Optional[IdentityRecord]:
        try:
            data = await self._read_json(path)
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping corrupt cache document {path.name}: {e}")
            return None
        return IdentityRecord.from_dict(data) if data is not None else None

    def _record_files(self) -> List[Path]:
        if not self.records_dir.is_dir():
            return []
        return sorted(self.records_dir.glob(f"*{RECORD_SUFFIX}"))

    async def _load_all_records(self) -> List[IdentityRecord]:
        records = []
        for path in self._record_files():
            record = await self._read_record_file(path)
            if record is not None:
                records.append(record)
        return records

    async def _load_record(self, key: str) -> Optional[IdentityRecord]:
        return await self._read_record_file(self._record_path(key))

    async def _merge_records(self, records: List[IdentityRecord]) -> int:
        async with self._records_lock:
            for record in records:
                path = self._record_path(record.key)
                merged = preserve_usage(record, await self._read_record_file(path))
                await self._write_json(path, merged.to_dict())
        return len(records)

    async def _update_usage(self, key: str, usage: UsageStats) -> bool:
        async with self._records_lock:
            path = self._record_path(key)
            record = await self._read_record_file(path)
            if record is None or record.is_deleted:
                return False
            record.usage = usage
            await self._write_json(path, record.to_dict())
        return True

    async def _delete_all_records(self) -> int:
        deleted = 0
        async with self._records_lock:
            for path in self._record_files():
                try:
                    await aiofiles.os.remove(str(path))
                    deleted += 1
                except FileNotFoundError:
                    continue
                except OSError as e:
                    raise CacheBackendError(
                        f"Failed to delete {unquote(path.stem)}",
                        backend_type=self.backend_type,
                        original_error=e,
                    )
        return deleted

    def _corrupt_metadata_error(self, error: Exception) -> CacheBackendError:
        return CacheBackendError(
            "Sync metadata document is corrupt", backend_type=self.backend_type, original_error=error
        )

    async def _load_metadata(self) -> Optional[SyncMetadata]:
        try:
            data = await self._read_json(self._metadata_path)
        except json.JSONDecodeError as e:
            raise self._corrupt_metadata_error(e)
        return SyncMetadata.from_dict(data) if data is not None else None

    async def _store_metadata(
        self, metadata: SyncMetadata, expected_version: Optional[int]
    ) -> SyncMetadata:
        async with self._metadata_lock:
            try:
                data = await self._read_json(self._metadata_path)
            except json.JSONDecodeError as e:
                # A corrupt document only blocks conditional writes
                if expected_version is not None:
                    raise self._corrupt_metadata_error(e)
                logger.warning(f"Replacing corrupt sync metadata document: {e}")
                data = None
            current_version = SyncMetadata.from_dict(data).version if data is not None else 0
            if expected_version is not None and expected_version != current_version:
                raise MetadataConflictError(expected_version, current_version)

            stored = SyncMetadata.from_dict({**metadata.to_dict(), "version": current_version + 1})
            await self._write_json(self._metadata_path, stored.to_dict())
        return stored

    async def health_check(self) -> bool:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            probe = self.cache_dir / ".health"
            async with aiofiles.open(probe, "w") as f:
                await f.write("ok")
            await aiofiles.os.remove(str(probe))
            return True
        except OSError as e:
            logger.error(f"File storage health check failed: {e}")
            return False

    async def delete_tables(self) -> None:
        for directory in (self.records_dir, self.metadata_dir):
            if directory.exists():
                shutil.rmtree(directory)
                logger.info(f"Deleted cache table directory {directory}")
