"""Tests for the cache manager sync policy."""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from src.dircache.errors import (
    AuthenticationError,
    CacheConfigurationError,
    DirectoryLoaderError,
    InvalidCursorError,
    MetadataConflictError,
)
from src.dircache.loaders.fakes import FakeStatsLoader, FakeUserDataLoader
from src.dircache.models import LoadResult, SyncMetadata, SyncStatus
from src.dircache.storage.memory import InMemoryCacheStorage
from tests.fixtures.cache_data import (
    BASE_TIME,
    FakeClock,
    make_record,
    make_stats_row,
    make_usage,
    memory_manager,
)


class TestFullSync:
    """Full synchronization behaviour."""

    @pytest.mark.asyncio
    async def test_first_sync_is_full_and_stores_every_member(self):
        users = [make_record(f"user{i}@contoso.com") for i in range(5)]
        loader = FakeUserDataLoader(users=users)
        manager = memory_manager(loader=loader)

        result = await manager.sync()

        assert result.full_sync is True
        assert result.record_count == 5
        stored = await manager.storage.get_all()
        assert {r.user_principal_name for r in stored} == {u.user_principal_name for u in users}

        metadata = await manager.get_sync_metadata()
        assert metadata.cursor == "fake-delta-token-1"
        assert metadata.last_full_sync == BASE_TIME
        assert metadata.last_delta_sync == BASE_TIME
        assert metadata.last_sync_status == SyncStatus.SUCCESS
        assert metadata.last_sync_error is None
        assert metadata.last_sync_count == 5

    @pytest.mark.asyncio
    async def test_sync_stamps_last_synced(self):
        manager = memory_manager()

        await manager.sync()

        record = await manager.get_cached_by_key("test1@contoso.com")
        assert record.last_synced == BASE_TIME

    @pytest.mark.asyncio
    async def test_full_sync_after_interval_elapses(self, clock):
        loader = FakeUserDataLoader()
        manager = memory_manager(loader=loader, clock=clock)
        await manager.sync()

        clock.advance(days=7, seconds=1)
        result = await manager.sync()

        assert result.full_sync is True
        assert loader.full_loads == 2
        assert loader.delta_loads == 0

    @pytest.mark.asyncio
    async def test_force_full_ignores_cursor(self):
        loader = FakeUserDataLoader()
        manager = memory_manager(loader=loader)
        await manager.sync()

        result = await manager.sync(force_full=True)

        assert result.full_sync is True
        assert loader.full_loads == 2

    @pytest.mark.asyncio
    async def test_full_sync_without_cursor_leaves_cursor_empty(self):
        loader = FakeUserDataLoader()
        loader.return_cursor = False
        manager = memory_manager(loader=loader)

        await manager.sync()
        await manager.sync()

        metadata = await manager.get_sync_metadata()
        assert metadata.cursor is None
        assert loader.full_loads == 2


class TestDeltaSync:
    """Incremental synchronization behaviour."""

    @pytest.mark.asyncio
    async def test_cursor_round_trip(self, clock):
        loader = FakeUserDataLoader()
        manager = memory_manager(loader=loader, clock=clock)
        await manager.sync()

        clock.advance(minutes=10)
        result = await manager.sync()

        assert result.full_sync is False
        assert loader.cursors_seen == ["fake-delta-token-1"]
        metadata = await manager.get_sync_metadata()
        assert metadata.cursor == "fake-delta-token-2"
        assert metadata.last_full_sync == BASE_TIME
        assert metadata.last_delta_sync == BASE_TIME + timedelta(minutes=10)

    @pytest.mark.asyncio
    async def test_delta_changes_overwrite_and_add_records(self):
        loader = FakeUserDataLoader()
        loader.queue_changes(
            [
                make_record("test1@contoso.com", record_id="1", department="Research"),
                make_record("new@contoso.com"),
            ]
        )
        manager = memory_manager(loader=loader)
        await manager.sync()

        result = await manager.sync()

        assert result.record_count == 2
        assert (await manager.get_cached_by_key("test1@contoso.com")).department == "Research"
        assert await manager.get_cached_by_key("new@contoso.com") is not None
        assert len(await manager.storage.get_all()) == 3

    @pytest.mark.asyncio
    async def test_delta_without_cursor_keeps_previous_cursor(self):
        loader = FakeUserDataLoader()
        manager = memory_manager(loader=loader)
        await manager.sync()

        loader.return_cursor = False
        await manager.sync()

        metadata = await manager.get_sync_metadata()
        assert metadata.cursor == "fake-delta-token-1"

    @pytest.mark.asyncio
    async def test_tombstoned_record_hidden_from_reads(self):
        loader = FakeUserDataLoader()
        loader.queue_changes([make_record("test2@contoso.com", record_id="2", is_deleted=True)])
        manager = memory_manager(loader=loader)
        await manager.sync()

        await manager.sync()

        assert await manager.get_cached_by_key("test2@contoso.com") is None
        keys = [r.user_principal_name for r in await manager.get_all_cached(skip_auto_sync=True)]
        assert keys == ["test1@contoso.com"]
        assert await manager.storage.count(include_deleted=True) == 2

    @pytest.mark.asyncio
    async def test_removals_by_id_become_tombstones(self):
        loader = FakeUserDataLoader()
        manager = memory_manager(loader=loader)
        await manager.sync()

        loader.load_changes = AsyncMock(
            return_value=LoadResult(records=[], cursor="next", removed_ids=["1", "unknown"])
        )
        result = await manager.sync()

        assert result.record_count == 1
        assert await manager.get_cached_by_key("test1@contoso.com") is None
        assert await manager.get_cached_by_key("test2@contoso.com") is not None

    @pytest.mark.asyncio
    async def test_delta_keeps_usage_block(self):
        loader = FakeUserDataLoader()
        loader.queue_changes([make_record("test1@contoso.com", record_id="1", job_title="Lead")])
        manager = memory_manager(loader=loader)
        await manager.sync()
        await manager.storage.apply_stats_overlay({"test1@contoso.com": make_usage()})

        await manager.sync()

        record = await manager.get_cached_by_key("test1@contoso.com")
        assert record.job_title == "Lead"
        assert record.usage is not None
        assert record.usage.last_activity == make_usage().last_activity


class TestSyncFailures:
    """Failure recording during sync."""

    @pytest.mark.asyncio
    async def test_failure_recorded_and_reraised(self, clock):
        loader = FakeUserDataLoader()
        manager = memory_manager(loader=loader, clock=clock)
        await manager.sync()
        before = await manager.get_sync_metadata()

        clock.advance(hours=2)
        loader.error = DirectoryLoaderError("upstream unavailable", status_code=503)
        with pytest.raises(DirectoryLoaderError):
            await manager.sync()

        after = await manager.get_sync_metadata()
        assert after.last_sync_status == SyncStatus.FAILED
        assert after.last_sync_error == "upstream unavailable"
        assert after.cursor == before.cursor
        assert after.last_full_sync == before.last_full_sync
        assert after.last_delta_sync == before.last_delta_sync

    @pytest.mark.asyncio
    async def test_failed_first_sync_sets_no_cursor(self):
        loader = FakeUserDataLoader()
        loader.error = AuthenticationError("denied", status_code=401)
        manager = memory_manager(loader=loader)

        with pytest.raises(AuthenticationError):
            await manager.sync()

        metadata = await manager.get_sync_metadata()
        assert metadata.cursor is None
        assert metadata.last_full_sync is None
        assert metadata.last_sync_status == SyncStatus.FAILED

    @pytest.mark.asyncio
    async def test_invalid_cursor_kept_by_default(self):
        loader = FakeUserDataLoader()
        manager = memory_manager(loader=loader)
        await manager.sync()

        loader.error = InvalidCursorError("sync state expired", status_code=410)
        with pytest.raises(InvalidCursorError):
            await manager.sync()

        metadata = await manager.get_sync_metadata()
        assert metadata.cursor == "fake-delta-token-1"

    @pytest.mark.asyncio
    async def test_invalid_cursor_cleared_when_configured(self):
        loader = FakeUserDataLoader()
        manager = memory_manager(loader=loader, auto_clear_on_invalid_cursor=True)
        await manager.sync()

        loader.error = InvalidCursorError("sync state expired", status_code=410)
        with pytest.raises(InvalidCursorError):
            await manager.sync()

        assert (await manager.get_sync_metadata()).cursor is None
        result = await manager.sync()
        assert result.full_sync is True

    @pytest.mark.asyncio
    async def test_in_progress_marker_written_before_load(self):
        manager = memory_manager()
        seen = []

        async def load_all():
            seen.append((await manager.get_sync_metadata()).last_sync_status)
            return LoadResult(records=[], cursor="c1")

        manager.loader.load_all = load_all
        await manager.sync()

        assert seen == [SyncStatus.IN_PROGRESS]


class TestReadPath:
    """Staleness-driven reads."""

    @pytest.mark.asyncio
    async def test_empty_cache_read_triggers_sync(self):
        loader = FakeUserDataLoader()
        manager = memory_manager(loader=loader)

        records = await manager.get_all_cached()

        assert len(records) == 2
        assert loader.full_loads == 1

    @pytest.mark.asyncio
    async def test_stale_read_syncs_exactly_once(self, clock):
        loader = FakeUserDataLoader()
        manager = memory_manager(
            loader=loader, clock=clock, cache_expiration=timedelta(minutes=5)
        )
        await manager.sync()

        clock.advance(minutes=6)
        with patch.object(manager, "sync", wraps=manager.sync) as sync_spy:
            await manager.get_all_cached()

        assert sync_spy.call_count == 1
        assert loader.delta_loads == 1

    @pytest.mark.asyncio
    async def test_fresh_read_does_not_sync(self, clock):
        loader = FakeUserDataLoader()
        manager = memory_manager(
            loader=loader, clock=clock, cache_expiration=timedelta(minutes=5)
        )
        await manager.sync()

        clock.advance(minutes=4)
        await manager.get_all_cached()

        assert loader.load_count == 1

    @pytest.mark.asyncio
    async def test_force_refresh_syncs_fresh_cache(self):
        loader = FakeUserDataLoader()
        manager = memory_manager(loader=loader)
        await manager.sync()

        await manager.get_all_cached(force_refresh=True)

        assert loader.load_count == 2

    @pytest.mark.asyncio
    async def test_skip_auto_sync_returns_stored_records(self):
        loader = FakeUserDataLoader()
        manager = memory_manager(loader=loader)

        records = await manager.get_all_cached(force_refresh=True, skip_auto_sync=True)

        assert records == []
        assert loader.load_count == 0

    @pytest.mark.asyncio
    async def test_point_lookup_never_syncs(self):
        loader = FakeUserDataLoader()
        manager = memory_manager(loader=loader)

        assert await manager.get_cached_by_key("test1@contoso.com") is None
        assert loader.load_count == 0

    @pytest.mark.asyncio
    async def test_filter_inactive_on_read(self):
        loader = FakeUserDataLoader()
        loader.queue_changes(
            [
                make_record("test1@contoso.com", record_id="1", account_enabled=False),
                make_record("guest@contoso.com", user_type="Guest"),
            ]
        )
        unfiltered = memory_manager(loader=loader)
        await unfiltered.sync()
        await unfiltered.sync()

        filtered = memory_manager(
            loader=loader,
            storage=unfiltered.storage,
            filter_inactive_on_read=True,
        )

        all_keys = {r.key for r in await unfiltered.get_all_cached(skip_auto_sync=True)}
        active_keys = {r.key for r in await filtered.get_all_cached(skip_auto_sync=True)}
        assert all_keys == {"test1@contoso.com", "test2@contoso.com", "guest@contoso.com"}
        assert active_keys == {"test2@contoso.com"}


class TestClear:
    """Cache invalidation."""

    @pytest.mark.asyncio
    async def test_clear_forces_full_sync(self):
        loader = FakeUserDataLoader()
        manager = memory_manager(loader=loader)
        await manager.sync()
        await manager.sync()

        deleted = await manager.clear()

        assert deleted == 2
        metadata = await manager.get_sync_metadata()
        assert metadata.cursor is None
        assert metadata.last_full_sync is None
        assert metadata.last_delta_sync is None
        assert metadata.last_sync_status == SyncStatus.NOT_RUN
        assert await manager.storage.get_all() == []

        result = await manager.sync()
        assert result.full_sync is True
        assert loader.full_loads == 2

    @pytest.mark.asyncio
    async def test_clear_repairs_corrupt_metadata(self, tmp_path):
        from src.dircache.storage.file import FileCacheStorage

        storage = FileCacheStorage(str(tmp_path))
        manager = memory_manager(storage=storage)
        await manager.sync()
        storage.metadata_dir.joinpath("UserDeltaSync.json").write_text("{not json")

        await manager.clear()

        metadata = await manager.get_sync_metadata()
        assert metadata.last_sync_status == SyncStatus.NOT_RUN
        assert metadata.cursor is None


class TestStatsRefresh:
    """Usage statistics overlay refresh."""

    @pytest.mark.asyncio
    async def test_stats_merge_is_non_creating(self, clock):
        stats_loader = FakeStatsLoader(
            records=[make_stats_row("test1@contoso.com"), make_stats_row("ghost@contoso.com")]
        )
        manager = memory_manager(stats_loader=stats_loader, clock=clock)
        await manager.sync()

        result = await manager.update_stats()

        assert result.status == "updated"
        assert result.updated_count == 1
        assert result.report_count == 2
        assert await manager.get_cached_by_key("ghost@contoso.com") is None
        record = await manager.get_cached_by_key("test1@contoso.com")
        assert record.usage.teams == make_stats_row("test1@contoso.com").teams
        assert record.usage.last_stats_update == BASE_TIME
        assert (await manager.get_sync_metadata()).last_stats_update == BASE_TIME

    @pytest.mark.asyncio
    async def test_stats_skipped_within_interval(self, clock):
        stats_loader = FakeStatsLoader(records=[make_stats_row("test1@contoso.com")])
        manager = memory_manager(stats_loader=stats_loader, clock=clock)
        await manager.update_stats()

        clock.advance(hours=23)
        result = await manager.update_stats()

        assert result.status == "skipped"
        assert stats_loader.fetch_count == 1

    @pytest.mark.asyncio
    async def test_stats_refreshed_after_interval(self, clock):
        stats_loader = FakeStatsLoader(records=[make_stats_row("test1@contoso.com")])
        manager = memory_manager(stats_loader=stats_loader, clock=clock)
        await manager.update_stats()

        clock.advance(hours=25)
        result = await manager.update_stats()

        assert result.status == "updated"
        assert stats_loader.fetch_count == 2

    @pytest.mark.asyncio
    async def test_force_ignores_interval(self):
        stats_loader = FakeStatsLoader()
        manager = memory_manager(stats_loader=stats_loader)
        await manager.update_stats()

        await manager.update_stats(force=True)

        assert stats_loader.fetch_count == 2

    @pytest.mark.asyncio
    async def test_failed_fetch_leaves_timestamp_unset(self):
        stats_loader = FakeStatsLoader(success=False, error_message="HTTP 500", status_code=500)
        manager = memory_manager(stats_loader=stats_loader)

        result = await manager.update_stats()

        assert result.status == "failed"
        assert result.error_message == "HTTP 500"
        assert (await manager.get_sync_metadata()).last_stats_update is None

        await manager.update_stats()
        assert stats_loader.fetch_count == 2

    @pytest.mark.asyncio
    async def test_empty_successful_report_stamps_timestamp(self):
        manager = memory_manager(stats_loader=FakeStatsLoader(records=[]))

        result = await manager.update_stats()

        assert result.status == "updated"
        assert result.updated_count == 0
        assert (await manager.get_sync_metadata()).last_stats_update == BASE_TIME

    @pytest.mark.asyncio
    async def test_authentication_error_propagates(self):
        stats_loader = FakeStatsLoader()
        stats_loader.error = AuthenticationError("denied", status_code=401)
        manager = memory_manager(stats_loader=stats_loader)

        with pytest.raises(AuthenticationError):
            await manager.update_stats()

        assert (await manager.get_sync_metadata()).last_stats_update is None

    @pytest.mark.asyncio
    async def test_stats_refresh_does_not_touch_sync_state(self):
        manager = memory_manager(stats_loader=FakeStatsLoader(records=[make_stats_row("test1@contoso.com")]))
        await manager.sync()
        before = await manager.get_sync_metadata()

        await manager.update_stats()

        after = await manager.get_sync_metadata()
        assert after.cursor == before.cursor
        assert after.last_delta_sync == before.last_delta_sync
        assert after.last_sync_status == SyncStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_missing_stats_loader_is_configuration_error(self):
        manager = memory_manager()
        manager.stats_loader = None

        with pytest.raises(CacheConfigurationError):
            await manager.update_stats()


class TestIsolation:
    """Independent cache instances."""

    @pytest.mark.asyncio
    async def test_instances_do_not_share_state(self, tmp_path):
        from src.dircache.storage.file import FileCacheStorage

        first = memory_manager(
            loader=FakeUserDataLoader(users=[make_record("a@contoso.com")]),
            storage=FileCacheStorage(str(tmp_path), "usercache_a", "usersyncmetadata_a"),
        )
        second = memory_manager(
            loader=FakeUserDataLoader(users=[make_record("b@contoso.com")]),
            storage=FileCacheStorage(str(tmp_path), "usercache_b", "usersyncmetadata_b"),
        )

        await first.sync()

        assert [r.key for r in await first.get_all_cached(skip_auto_sync=True)] == ["a@contoso.com"]
        assert await second.get_all_cached(skip_auto_sync=True) == []
        assert (await second.get_sync_metadata()).cursor is None

        await second.clear()
        assert (await first.get_sync_metadata()).cursor == "fake-delta-token-1"


class TestMetadataConflicts:
    """Optimistic concurrency on the metadata record."""

    @pytest.mark.asyncio
    async def test_conflicting_final_write_is_retried_once(self):
        storage = InMemoryCacheStorage()
        manager = memory_manager(storage=storage)
        original_load_all = manager.loader.load_all

        async def load_all_with_interference():
            result = await original_load_all()
            # Someone else writes metadata while this sync is loading
            current = await storage.get_metadata()
            await storage.set_metadata(current, expected_version=current.version)
            return result

        manager.loader.load_all = load_all_with_interference
        result = await manager.sync()

        metadata = await storage.get_metadata()
        assert metadata.last_sync_status == SyncStatus.SUCCESS
        assert metadata.cursor == "fake-delta-token-1"
        assert metadata.version == result.metadata.version == 3

    @pytest.mark.asyncio
    async def test_second_conflict_propagates(self):
        storage = InMemoryCacheStorage()
        manager = memory_manager(storage=storage)
        storage.set_metadata = AsyncMock(side_effect=MetadataConflictError(1, 2))

        with pytest.raises(MetadataConflictError):
            await manager.sync()

        assert storage.set_metadata.await_count == 2

    @pytest.mark.asyncio
    async def test_clear_writes_unconditionally(self):
        storage = InMemoryCacheStorage()
        await storage.set_metadata(SyncMetadata(cursor="old"))
        manager = memory_manager(storage=storage)

        await manager.clear()

        metadata = await storage.get_metadata()
        assert metadata.cursor is None
        assert metadata.version == 2


class TestLifecycle:
    """Resource handling."""

    @pytest.mark.asyncio
    async def test_context_manager_closes_collaborators(self):
        manager = memory_manager(clock=FakeClock())
        manager.loader.aclose = AsyncMock()
        manager.stats_loader.aclose = AsyncMock()
        manager.storage.aclose = AsyncMock()

        async with manager:
            pass

        manager.loader.aclose.assert_awaited_once()
        manager.stats_loader.aclose.assert_awaited_once()
        manager.storage.aclose.assert_awaited_once()
