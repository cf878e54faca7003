"""Configuration file utilities for dircache."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".dircache"
CONFIG_FILE_YAML = CONFIG_DIR / "config.yaml"
CONFIG_PATH_ENV = "DIRCACHE_CONFIG"

# Default cache configuration
DEFAULT_CACHE_CONFIG = {
    "backend_type": "file",
    "records_table_name": "usercache",
    "metadata_table_name": "usersyncmetadata",
    "cache_expiration": "1h",
    "full_sync_interval": "7d",
    "stats_refresh_interval": "24h",
    "stats_period": "D30",
    "filter_inactive_on_read": False,
    "auto_clear_on_invalid_cursor": False,
}

# Default directory provider configuration
DEFAULT_GRAPH_CONFIG = {
    "base_url": "https://graph.microsoft.com",
    "authority": "https://login.microsoftonline.com",
    "timeout": 60,
    "page_size": 999,
}


class Config:
    """Manages dircache configuration stored in a YAML file."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the configuration manager.

        Args:
            config_path: Optional path to the YAML file. Defaults to the
                ``DIRCACHE_CONFIG`` environment variable, then ~/.dircache/config.yaml
        """
        env_path = os.environ.get(CONFIG_PATH_ENV)
        if config_path:
            self.config_file = Path(config_path).expanduser()
        elif env_path:
            self.config_file = Path(env_path).expanduser()
        else:
            self.config_file = CONFIG_FILE_YAML
        self.config_data: Dict[str, Any] = {}
        self._config_loaded = False

    def _ensure_config_loaded(self):
        """Ensure configuration is loaded from file."""
        if not self._config_loaded:
            self._load_config()
            self._config_loaded = True

    def _load_config(self):
        """Load the configuration from the YAML file, if present."""
        if not self.config_file.exists():
            self.config_data = {}
            return

        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                self.config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"Configuration file {self.config_file} is not valid YAML: {e}")
            self.config_data = {}
            return

        if not isinstance(self.config_data, dict):
            logger.error(f"Configuration file {self.config_file} must contain a mapping")
            self.config_data = {}
            return

        self._expand_tilde_paths()

    def _expand_tilde_paths(self):
        """Expand tilde (~) paths in the cache section."""
        cache_config = self.config_data.get("cache")
        if isinstance(cache_config, dict) and isinstance(cache_config.get("file_cache_dir"), str):
            cache_config["file_cache_dir"] = str(Path(cache_config["file_cache_dir"]).expanduser())

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value with dot notation support.

        Args:
            key: Configuration key (supports dot notation like "cache.backend_type")
            default: Default value if key doesn't exist

        Returns:
            Configuration value
        """
        self._ensure_config_loaded()

        value: Any = self.config_data
        for part in key.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default
        return value

    def get_cache_config(self) -> Dict[str, Any]:
        """Get the cache section merged over the defaults."""
        cache_config = DEFAULT_CACHE_CONFIG.copy()
        file_cache_config = self.get("cache", {})
        if isinstance(file_cache_config, dict):
            cache_config.update(file_cache_config)
        return cache_config

    def get_graph_config(self) -> Dict[str, Any]:
        """Get the directory provider section merged over the defaults."""
        graph_config = DEFAULT_GRAPH_CONFIG.copy()
        file_graph_config = self.get("graph", {})
        if isinstance(file_graph_config, dict):
            graph_config.update(file_graph_config)
        return graph_config

    def get_config_file_path(self) -> Path:
        """Get the path to the configuration file in use."""
        return self.config_file
