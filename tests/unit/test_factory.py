"""Tests for storage and manager wiring."""

import pytest

from src.dircache.config import CacheSettings, GraphSettings
from src.dircache.errors import CacheConfigurationError
from src.dircache.factory import StorageFactory, create_cache_manager, create_graph_cache_manager
from src.dircache.loaders.fakes import FakeUserDataLoader
from src.dircache.loaders.graph_stats import GraphUsageStatsLoader
from src.dircache.loaders.graph_users import GraphUserDataLoader
from src.dircache.storage.dynamodb import DynamoDBCacheStorage
from src.dircache.storage.file import FileCacheStorage
from src.dircache.storage.memory import InMemoryCacheStorage
from tests.fixtures.graph_responses import graph_settings


class TestStorageFactory:
    """Test cases for StorageFactory."""

    def test_memory_backend(self):
        storage = StorageFactory.create_storage(
            CacheSettings(backend_type="memory", records_table_name="usercache_a")
        )
        assert isinstance(storage, InMemoryCacheStorage)
        assert storage.records_table_name == "usercache_a"

    def test_file_backend(self, tmp_path):
        storage = StorageFactory.create_storage(
            CacheSettings(backend_type="file", file_cache_dir=str(tmp_path))
        )
        assert isinstance(storage, FileCacheStorage)
        assert storage.records_dir == tmp_path / "usercache"
        assert storage.metadata_dir == tmp_path / "usersyncmetadata"

    def test_dynamodb_backend(self):
        storage = StorageFactory.create_storage(
            CacheSettings(
                backend_type="dynamodb",
                metadata_table_name="usersyncmetadata_b",
                dynamodb_region="eu-west-1",
                dynamodb_profile="cache",
            )
        )
        assert isinstance(storage, DynamoDBCacheStorage)
        assert storage.metadata_table_name == "usersyncmetadata_b"
        assert storage.region == "eu-west-1"
        assert storage.profile == "cache"

    def test_invalid_settings_rejected(self):
        with pytest.raises(CacheConfigurationError, match="backend_type"):
            StorageFactory.create_storage(CacheSettings(backend_type="redis"))

    def test_available_backends(self):
        assert set(StorageFactory.get_available_backends()) == {"memory", "file", "dynamodb"}


class TestManagerWiring:
    def test_create_cache_manager(self):
        settings = CacheSettings(backend_type="memory")
        loader = FakeUserDataLoader()

        manager = create_cache_manager(settings, loader)

        assert manager.loader is loader
        assert manager.settings is settings
        assert manager.stats_loader is None
        assert isinstance(manager.storage, InMemoryCacheStorage)

    def test_graph_manager_shares_one_client(self):
        settings = CacheSettings(backend_type="memory", stats_period="D90")

        manager = create_graph_cache_manager(settings, graph_settings())

        assert isinstance(manager.loader, GraphUserDataLoader)
        assert isinstance(manager.stats_loader, GraphUsageStatsLoader)
        assert manager.loader.client is manager.stats_loader.client
        assert manager.stats_loader.period == "D90"

    def test_graph_manager_requires_credentials(self):
        with pytest.raises(CacheConfigurationError, match="client_secret"):
            create_graph_cache_manager(
                CacheSettings(backend_type="memory"),
                GraphSettings(tenant_id="t", client_id="c"),
            )

    def test_graph_manager_without_credentials_for_cache_reads(self):
        manager = create_graph_cache_manager(
            CacheSettings(backend_type="memory"), GraphSettings(), require_credentials=False
        )

        assert isinstance(manager.loader, GraphUserDataLoader)
