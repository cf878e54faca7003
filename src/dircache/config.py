"""Cache and directory provider settings."""

import logging
import os
import re
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .errors import CacheConfigurationError

logger = logging.getLogger(__name__)

VALID_BACKENDS = ["file", "dynamodb", "memory"]
VALID_STATS_PERIODS = ["D7", "D30", "D90", "D180"]

_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$", re.IGNORECASE)
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}

# Environment variable -> settings field
ENV_VARS = {
    "DIRCACHE_BACKEND": "backend_type",
    "DIRCACHE_RECORDS_TABLE": "records_table_name",
    "DIRCACHE_METADATA_TABLE": "metadata_table_name",
    "DIRCACHE_FILE_DIR": "file_cache_dir",
    "DIRCACHE_DYNAMODB_REGION": "dynamodb_region",
    "DIRCACHE_DYNAMODB_PROFILE": "dynamodb_profile",
    "DIRCACHE_CACHE_EXPIRATION": "cache_expiration",
    "DIRCACHE_FULL_SYNC_INTERVAL": "full_sync_interval",
    "DIRCACHE_STATS_REFRESH_INTERVAL": "stats_refresh_interval",
    "DIRCACHE_STATS_PERIOD": "stats_period",
    "DIRCACHE_FILTER_INACTIVE": "filter_inactive_on_read",
    "DIRCACHE_AUTO_CLEAR_INVALID_CURSOR": "auto_clear_on_invalid_cursor",
}

GRAPH_ENV_VARS = {
    "DIRCACHE_GRAPH_TENANT_ID": "tenant_id",
    "DIRCACHE_GRAPH_CLIENT_ID": "client_id",
    "DIRCACHE_GRAPH_CLIENT_SECRET": "client_secret",
    "DIRCACHE_GRAPH_BASE_URL": "base_url",
    "DIRCACHE_GRAPH_AUTHORITY": "authority",
    "DIRCACHE_GRAPH_TIMEOUT": "timeout",
    "DIRCACHE_GRAPH_PAGE_SIZE": "page_size",
}

_BOOL_FIELDS = {"filter_inactive_on_read", "auto_clear_on_invalid_cursor"}
_DURATION_FIELDS = {"cache_expiration", "full_sync_interval", "stats_refresh_interval"}


def parse_duration(value: Union[str, int, float, timedelta]) -> timedelta:
    """
    Parse a duration given as seconds or as a string like ``30s``, ``5m``, ``1h`` or ``7d``.

    Raises:
        CacheConfigurationError: If the value cannot be parsed
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise CacheConfigurationError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)

    match = _DURATION_PATTERN.match(str(value))
    if not match:
        raise CacheConfigurationError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(seconds=int(amount) * _DURATION_UNITS[unit.lower()])


def format_duration(value: timedelta) -> str:
    """Render a duration in the largest whole unit, e.g. ``7d`` or ``90m``."""
    seconds = int(value.total_seconds())
    for unit, size in (("d", 86400), ("h", 3600), ("m", 60)):
        if seconds and seconds % size == 0:
            return f"{seconds // size}{unit}"
    return f"{seconds}s"


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("true", "1", "yes", "on")


@dataclass
class CacheSettings:
    """
    Settings for one cache instance and its synchronization policy.

    Two instances configured with different table names never see each
    other's records or metadata.
    """

    # Backend configuration
    backend_type: str = "file"  # "file", "dynamodb", "memory"
    records_table_name: str = "usercache"
    metadata_table_name: str = "usersyncmetadata"

    # File backend configuration
    file_cache_dir: Optional[str] = None

    # DynamoDB configuration
    dynamodb_region: Optional[str] = None
    dynamodb_profile: Optional[str] = None

    # Sync policy
    cache_expiration: timedelta = timedelta(hours=1)
    full_sync_interval: timedelta = timedelta(days=7)
    stats_refresh_interval: timedelta = timedelta(hours=24)
    stats_period: str = "D30"

    filter_inactive_on_read: bool = False
    auto_clear_on_invalid_cursor: bool = False

    def __post_init__(self):
        """Normalize duration and flag fields given as strings."""
        for name in _DURATION_FIELDS:
            setattr(self, name, parse_duration(getattr(self, name)))
        for name in _BOOL_FIELDS:
            setattr(self, name, _to_bool(getattr(self, name)))

        if self.backend_type not in VALID_BACKENDS:
            logger.warning(f"Invalid backend type '{self.backend_type}', will need correction")

        if self.backend_type == "file" and not self.file_cache_dir:
            self.file_cache_dir = str(Path.home() / ".dircache" / "cache")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheSettings":
        """Create settings from a dictionary, ignoring unknown keys."""
        known = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
        unknown = set(data) - set(known)
        if unknown:
            logger.debug(f"Ignoring unknown cache settings: {sorted(unknown)}")
        return cls(**known)

    @classmethod
    def from_config_file(cls, config_path: Optional[str] = None) -> "CacheSettings":
        """
        Load settings from the ``cache`` section of the YAML config file.

        Args:
            config_path: Optional path to config file. If None, uses default location.

        Returns:
            CacheSettings instance loaded from file
        """
        from .utils.config import Config

        config = Config(config_path)
        settings = cls.from_dict(config.get_cache_config())
        logger.debug(f"Loaded cache settings from {config.get_config_file_path()}")
        return settings

    @classmethod
    def from_environment(cls) -> "CacheSettings":
        """
        Load settings from ``DIRCACHE_*`` environment variables.

        Returns:
            CacheSettings instance loaded from environment variables
        """
        data = {
            field_name: os.environ[env_var]
            for env_var, field_name in ENV_VARS.items()
            if os.environ.get(env_var)
        }
        logger.debug("Loaded cache settings from environment variables")
        return cls.from_dict(data)

    @classmethod
    def from_config_and_environment(cls, config_path: Optional[str] = None) -> "CacheSettings":
        """
        Load settings from file first, then override with environment variables.

        Args:
            config_path: Optional path to config file. If None, uses default location.

        Returns:
            CacheSettings instance with merged configuration
        """
        from .utils.config import Config

        merged = Config(config_path).get_cache_config()
        for env_var, field_name in ENV_VARS.items():
            value = os.environ.get(env_var)
            if value:
                merged[field_name] = value

        logger.debug("Loaded cache settings from file and environment variables")
        return cls.from_dict(merged)

    def validate(self) -> Dict[str, str]:
        """
        Validate the settings and return any errors.

        Returns:
            Dictionary of validation errors (empty if valid)
        """
        errors = {}

        if self.backend_type not in VALID_BACKENDS:
            errors["backend_type"] = (
                f"Invalid backend type '{self.backend_type}'. Must be one of: {VALID_BACKENDS}"
            )

        for name in ("records_table_name", "metadata_table_name"):
            table_name = getattr(self, name)
            if not table_name:
                errors[name] = "Table name is required"
            elif not table_name.replace("-", "").replace("_", "").replace(".", "").isalnum():
                errors[name] = (
                    "Table name must contain only alphanumeric characters, hyphens, dots and underscores"
                )

        if self.records_table_name and self.records_table_name == self.metadata_table_name:
            errors["metadata_table_name"] = "Metadata table must differ from the records table"

        for name in _DURATION_FIELDS:
            if getattr(self, name) <= timedelta(0):
                errors[name] = f"{name} must be positive"

        if self.stats_period not in VALID_STATS_PERIODS:
            errors["stats_period"] = (
                f"Invalid stats period '{self.stats_period}'. Must be one of: {VALID_STATS_PERIODS}"
            )

        if self.backend_type == "file" and self.file_cache_dir:
            cache_dir = Path(self.file_cache_dir)
            if cache_dir.exists() and not cache_dir.is_dir():
                errors["file_cache_dir"] = (
                    f"File cache directory path exists but is not a directory: {self.file_cache_dir}"
                )

        return errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to a dictionary suitable for the YAML config file."""
        return {
            "backend_type": self.backend_type,
            "records_table_name": self.records_table_name,
            "metadata_table_name": self.metadata_table_name,
            "file_cache_dir": self.file_cache_dir,
            "dynamodb_region": self.dynamodb_region,
            "dynamodb_profile": self.dynamodb_profile,
            "cache_expiration": format_duration(self.cache_expiration),
            "full_sync_interval": format_duration(self.full_sync_interval),
            "stats_refresh_interval": format_duration(self.stats_refresh_interval),
            "stats_period": self.stats_period,
            "filter_inactive_on_read": self.filter_inactive_on_read,
            "auto_clear_on_invalid_cursor": self.auto_clear_on_invalid_cursor,
        }


@dataclass
class GraphSettings:
    """Credentials and endpoints for the Microsoft Graph adapters."""

    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    base_url: str = "https://graph.microsoft.com"
    authority: str = "https://login.microsoftonline.com"
    timeout: int = 60
    page_size: int = 999

    def __post_init__(self):
        self.timeout = int(self.timeout)
        self.page_size = int(self.page_size)

    @property
    def token_url(self) -> str:
        return f"{self.authority.rstrip('/')}/{self.tenant_id}/oauth2/v2.0/token"

    @property
    def scope(self) -> str:
        return f"{self.base_url.rstrip('/')}/.default"

    @classmethod
    def from_config_and_environment(cls, config_path: Optional[str] = None) -> "GraphSettings":
        """Load the ``graph`` section of the config file, overridden by environment variables."""
        from .utils.config import Config

        merged = Config(config_path).get_graph_config()
        for env_var, field_name in GRAPH_ENV_VARS.items():
            value = os.environ.get(env_var)
            if value:
                merged[field_name] = value

        known = {name: merged[name] for name in cls.__dataclass_fields__ if name in merged}
        return cls(**known)

    def validate(self) -> Dict[str, str]:
        """Validate the settings and return any errors."""
        errors = {}
        for name in ("tenant_id", "client_id", "client_secret"):
            if not getattr(self, name):
                errors[name] = f"{name} is required"
        if self.timeout <= 0:
            errors["timeout"] = "Timeout must be positive"
        if not 1 <= self.page_size <= 999:
            errors["page_size"] = "Page size must be between 1 and 999"
        return errors

    def require_valid(self) -> None:
        """Raise CacheConfigurationError listing every invalid field."""
        errors = self.validate()
        if errors:
            details = "; ".join(f"{key}: {message}" for key, message in errors.items())
            raise CacheConfigurationError(f"Invalid Graph settings: {details}")
