"""Loaders for the upstream directory and usage report."""

from .base import DirectoryDataLoader, StatsLoader
from .fakes import FakeStatsLoader, FakeUserDataLoader
from .graph_client import GraphClient
from .graph_stats import GraphUsageStatsLoader
from .graph_users import GraphUserDataLoader

__all__ = [
    "DirectoryDataLoader",
    "StatsLoader",
    "FakeUserDataLoader",
    "FakeStatsLoader",
    "GraphClient",
    "GraphUserDataLoader",
    "GraphUsageStatsLoader",
]
