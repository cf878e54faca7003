"""Factories wiring storages, loaders and the cache manager from settings."""

import logging
from typing import List, Optional

from .config import CacheSettings, GraphSettings
from .errors import CacheBackendError, CacheConfigurationError
from .loaders.base import DirectoryDataLoader, StatsLoader
from .loaders.graph_client import GraphClient
from .loaders.graph_stats import GraphUsageStatsLoader
from .loaders.graph_users import GraphUserDataLoader
from .manager import UserCacheManager
from .storage.base import CacheStorage
from .storage.dynamodb import DynamoDBCacheStorage
from .storage.file import FileCacheStorage
from .storage.memory import InMemoryCacheStorage

logger = logging.getLogger(__name__)


class StorageFactory:
    """
    Factory class for creating cache storage instances.

    Provides a centralized way to create the storage selected by the settings.
    """

    @staticmethod
    def create_storage(settings: CacheSettings) -> CacheStorage:
        """
        Create a storage instance based on settings.

        Raises:
            CacheConfigurationError: If the settings are invalid
            CacheBackendError: If storage creation fails
        """
        errors = settings.validate()
        if errors:
            details = "; ".join(f"{key}: {message}" for key, message in errors.items())
            raise CacheConfigurationError(f"Invalid cache settings: {details}")

        backend_type = settings.backend_type.lower()
        try:
            if backend_type == "memory":
                storage: CacheStorage = InMemoryCacheStorage(
                    settings.records_table_name, settings.metadata_table_name
                )
            elif backend_type == "file":
                storage = FileCacheStorage(
                    settings.file_cache_dir,
                    settings.records_table_name,
                    settings.metadata_table_name,
                )
            else:
                storage = DynamoDBCacheStorage(
                    settings.records_table_name,
                    settings.metadata_table_name,
                    region=settings.dynamodb_region,
                    profile=settings.dynamodb_profile,
                )
        except CacheBackendError:
            raise
        except Exception as e:
            raise CacheBackendError(
                f"Failed to create {backend_type} storage: {e}",
                backend_type=backend_type,
                original_error=e,
            )

        logger.debug(
            f"Created {backend_type} storage for tables "
            f"{settings.records_table_name}/{settings.metadata_table_name}"
        )
        return storage

    @staticmethod
    def get_available_backends() -> List[str]:
        return ["memory", "file", "dynamodb"]


def create_cache_manager(
    settings: CacheSettings,
    loader: DirectoryDataLoader,
    stats_loader: Optional[StatsLoader] = None,
    storage: Optional[CacheStorage] = None,
) -> UserCacheManager:
    """Wire a manager over the storage selected by ``settings``."""
    return UserCacheManager(
        loader=loader,
        storage=storage or StorageFactory.create_storage(settings),
        settings=settings,
        stats_loader=stats_loader,
    )


def create_graph_cache_manager(
    settings: CacheSettings, graph_settings: GraphSettings, require_credentials: bool = True
) -> UserCacheManager:
    """
    Wire a manager backed by the Microsoft Graph loaders.

    With ``require_credentials=False`` the manager can still read and clear the
    cache; the credentials are then checked on the first Graph request.

    Raises:
        CacheConfigurationError: If Graph credentials are missing and required
    """
    if require_credentials:
        graph_settings.require_valid()
    client = GraphClient(graph_settings)
    return create_cache_manager(
        settings,
        loader=GraphUserDataLoader(client),
        stats_loader=GraphUsageStatsLoader(client, period=settings.stats_period),
    )
