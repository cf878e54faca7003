"""In-process loaders returning canned data, for development and tests."""

import asyncio
import copy
from typing import Iterable, List, Optional

from ..models import MEMBER_USER_TYPE, IdentityRecord, LoadResult, StatsRecord, StatsResult
from .base import DirectoryDataLoader, StatsLoader


def default_test_users() -> List[IdentityRecord]:
    return [
        IdentityRecord(
            id="1",
            user_principal_name="test1@contoso.com",
            display_name="Test User 1",
            given_name="Test",
            surname="User1",
            department="Engineering",
            job_title="Software Engineer",
            account_enabled=True,
            user_type=MEMBER_USER_TYPE,
        ),
        IdentityRecord(
            id="2",
            user_principal_name="test2@contoso.com",
            display_name="Test User 2",
            given_name="Test",
            surname="User2",
            department="Sales",
            job_title="Sales Manager",
            account_enabled=True,
            user_type=MEMBER_USER_TYPE,
        ),
    ]


class FakeUserDataLoader(DirectoryDataLoader):
    """
    Directory loader over a fixed user list.

    Every load hands out a new cursor ``fake-delta-token-N``. Delta loads
    return the next queued change batch (empty when none is queued). Setting
    ``error`` makes the next load raise it.
    """

    def __init__(
        self,
        users: Optional[Iterable[IdentityRecord]] = None,
        delta_batches: Optional[Iterable[Iterable[IdentityRecord]]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        super().__init__(cancel_event)
        self.users = list(users) if users is not None else default_test_users()
        self.delta_batches: List[List[IdentityRecord]] = [
            list(batch) for batch in (delta_batches or [])
        ]
        self.load_count = 0
        self.full_loads = 0
        self.delta_loads = 0
        self.cursors_seen: List[str] = []
        self.error: Optional[Exception] = None
        self.return_cursor = True

    def queue_changes(self, changes: Iterable[IdentityRecord]) -> None:
        self.delta_batches.append(list(changes))

    def _next_cursor(self) -> Optional[str]:
        self.load_count += 1
        return f"fake-delta-token-{self.load_count}" if self.return_cursor else None

    def _raise_pending_error(self) -> None:
        if self.error is not None:
            error, self.error = self.error, None
            raise error

    async def load_all(self) -> LoadResult:
        self.check_cancelled()
        self.full_loads += 1
        self._raise_pending_error()
        records = [copy.deepcopy(user) for user in self.users if user.is_active_member()]
        return LoadResult(records=records, cursor=self._next_cursor())

    async def load_changes(self, cursor: str) -> LoadResult:
        self.check_cancelled()
        self.delta_loads += 1
        self.cursors_seen.append(cursor)
        self._raise_pending_error()
        changes = self.delta_batches.pop(0) if self.delta_batches else []
        return LoadResult(records=copy.deepcopy(changes), cursor=self._next_cursor())


class FakeStatsLoader(StatsLoader):
    """Statistics loader returning a fixed report."""

    def __init__(
        self,
        records: Optional[Iterable[StatsRecord]] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.records = list(records or [])
        self.success = success
        self.error_message = error_message
        self.status_code = status_code
        self.fetch_count = 0
        self.error: Optional[Exception] = None

    async def fetch_usage_stats(self) -> StatsResult:
        self.fetch_count += 1
        if self.error is not None:
            raise self.error
        return StatsResult(
            records=copy.deepcopy(self.records) if self.success else [],
            success=self.success,
            error_message=self.error_message,
            status_code=self.status_code if self.status_code is not None else (200 if self.success else 500),
        )
