"""Loader interfaces for the upstream directory and the usage report."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..models import LoadResult, StatsResult

logger = logging.getLogger(__name__)


class DirectoryDataLoader(ABC):
    """
    Abstract provider of identity records.

    ``load_all`` returns only enabled regular members; ``load_changes`` returns
    every change since the cursor unfiltered, with removals as tombstones.
    Both page until the upstream is exhausted and check for cancellation
    between pages.
    """

    def __init__(self, cancel_event: Optional[asyncio.Event] = None):
        """
        Args:
            cancel_event: Optional event; once set, the next page boundary aborts the load
        """
        self.cancel_event = cancel_event

    def check_cancelled(self) -> None:
        """Raise ``asyncio.CancelledError`` if cancellation was requested."""
        if self.cancel_event is not None and self.cancel_event.is_set():
            logger.info("Directory load cancelled")
            raise asyncio.CancelledError("Directory load cancelled")

    @abstractmethod
    async def load_all(self) -> LoadResult:
        """
        Load every enabled member and return the cursor for later delta loads.

        Raises:
            DirectoryLoaderError: If the upstream request fails
        """

    @abstractmethod
    async def load_changes(self, cursor: str) -> LoadResult:
        """
        Load changes since ``cursor``.

        Raises:
            InvalidCursorError: If the cursor is invalid or expired
            DirectoryLoaderError: If the upstream request fails
        """

    async def aclose(self) -> None:
        """Release HTTP sessions held by the loader."""

    async def __aenter__(self) -> "DirectoryDataLoader":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


class StatsLoader(ABC):
    """Abstract provider of the periodic usage report."""

    @abstractmethod
    async def fetch_usage_stats(self) -> StatsResult:
        """
        Fetch and parse the usage report.

        Ordinary upstream failures are reported through ``StatsResult.success``.

        Raises:
            AuthenticationError: If credentials are rejected
        """

    async def aclose(self) -> None:
        """Release HTTP sessions held by the loader."""

    async def __aenter__(self) -> "StatsLoader":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
