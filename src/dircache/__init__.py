"""dircache - Directory cache synchronization engine."""

from .config import CacheSettings, GraphSettings
from .errors import (
    AuthenticationError,
    CacheBackendError,
    CacheConfigurationError,
    CacheError,
    DirectoryLoaderError,
    InvalidCursorError,
    MetadataConflictError,
)
from .factory import StorageFactory, create_cache_manager, create_graph_cache_manager
from .manager import StatsUpdateResult, SyncResult, UserCacheManager
from .models import (
    IdentityRecord,
    LoadResult,
    StatsRecord,
    StatsResult,
    SyncMetadata,
    SyncStatus,
    UsageStats,
)


def _get_version():
    """Get the version from package metadata or pyproject.toml."""
    try:
        from importlib.metadata import PackageNotFoundError, version

        return version("dircache")
    except PackageNotFoundError:
        # Fallback for development/editable installs
        import re
        from pathlib import Path

        pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"
        if not pyproject_path.exists():
            return "0.0.0"

        with open(pyproject_path, "r", encoding="utf-8") as f:
            version_match = re.search(r'^version\s*=\s*["\']([^"\']+)["\']', f.read(), re.M)
        return version_match.group(1) if version_match else "0.0.0"


__version__ = _get_version()

__all__ = [
    "__version__",
    # Settings
    "CacheSettings",
    "GraphSettings",
    # Models
    "IdentityRecord",
    "UsageStats",
    "StatsRecord",
    "StatsResult",
    "LoadResult",
    "SyncMetadata",
    "SyncStatus",
    # Manager and wiring
    "UserCacheManager",
    "SyncResult",
    "StatsUpdateResult",
    "StorageFactory",
    "create_cache_manager",
    "create_graph_cache_manager",
    # Errors
    "CacheError",
    "CacheBackendError",
    "CacheConfigurationError",
    "MetadataConflictError",
    "DirectoryLoaderError",
    "InvalidCursorError",
    "AuthenticationError",
]
