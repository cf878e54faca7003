"""Cache storage implementations.

This module provides the storage backends for the directory cache:
- InMemoryCacheStorage: Per-instance dictionaries for development and tests
- FileCacheStorage: Local JSON documents
- DynamoDBCacheStorage: AWS DynamoDB tables
- CacheStorage: Abstract base class for all storages
"""

from .base import CacheStorage
from .dynamodb import DynamoDBCacheStorage
from .file import FileCacheStorage
from .memory import InMemoryCacheStorage

__all__ = [
    "CacheStorage",
    "InMemoryCacheStorage",
    "FileCacheStorage",
    "DynamoDBCacheStorage",
]
