"""Tests for the Graph users delta loader."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from src.dircache.errors import DirectoryLoaderError, InvalidCursorError
from src.dircache.loaders.graph_users import (
    USERS_DELTA_PATH,
    GraphUserDataLoader,
    is_enabled_member,
    user_to_record,
)
from tests.fixtures.graph_responses import graph_settings

DELTA_LINK = "https://graph.microsoft.com/v1.0/users/delta?$deltatoken=next-token"
NEXT_LINK = "https://graph.microsoft.com/v1.0/users/delta?$skiptoken=page-2"


def graph_user(upn, user_id=None, enabled=True, user_type="Member", **extra):
    user = {
        "id": user_id or f"id-{upn.split('@')[0]}",
        "userPrincipalName": upn,
        "displayName": upn.split("@")[0].title(),
        "accountEnabled": enabled,
        "userType": user_type,
    }
    user.update(extra)
    return user


class TestUserMapping:
    def test_maps_graph_properties(self):
        record = user_to_record(
            graph_user(
                "alice@contoso.com",
                jobTitle="Engineer",
                officeLocation="HQ",
                employeeHireDate="2020-01-06T00:00:00Z",
            )
        )

        assert record.user_principal_name == "alice@contoso.com"
        assert record.job_title == "Engineer"
        assert record.office_location == "HQ"
        assert record.hire_date.year == 2020
        assert record.account_enabled is True
        assert record.is_deleted is False

    def test_removed_marker_sets_tombstone(self):
        record = user_to_record(graph_user("gone@contoso.com", **{"@removed": {"reason": "changed"}}))
        assert record.is_deleted is True

    def test_missing_principal_name(self):
        assert user_to_record({"id": "x", "@removed": {"reason": "deleted"}}) is None
        assert user_to_record({"id": "x", "userPrincipalName": "  "}) is None

    def test_enabled_member_filter(self):
        assert is_enabled_member(graph_user("a@contoso.com")) is True
        assert is_enabled_member(graph_user("a@contoso.com", enabled=False)) is False
        assert is_enabled_member(graph_user("a@contoso.com", user_type="Guest")) is False
        assert is_enabled_member({"userPrincipalName": "a@contoso.com"}) is False


class TestGraphUserDataLoader:
    """Test cases for GraphUserDataLoader."""

    def setup_method(self):
        self.client = Mock()
        self.client.settings = graph_settings(page_size=50)
        self.client.get_json = AsyncMock()
        self.client.aclose = AsyncMock()
        self.loader = GraphUserDataLoader(self.client)

    @pytest.mark.asyncio
    async def test_full_load_pages_and_filters(self):
        self.client.get_json.side_effect = [
            {
                "value": [graph_user("a@contoso.com"), graph_user("guest@contoso.com", user_type="Guest")],
                "@odata.nextLink": NEXT_LINK,
            },
            {
                "value": [graph_user("b@contoso.com"), graph_user("off@contoso.com", enabled=False)],
                "@odata.deltaLink": DELTA_LINK,
            },
        ]

        result = await self.loader.load_all()

        assert [r.key for r in result.records] == ["a@contoso.com", "b@contoso.com"]
        assert result.cursor == DELTA_LINK
        first_call, second_call = self.client.get_json.call_args_list
        assert first_call[0][0] == USERS_DELTA_PATH
        assert "userPrincipalName" in first_call[1]["params"]["$select"]
        assert first_call[1]["headers"] == {"Prefer": "odata.maxpagesize=50"}
        assert second_call[0][0] == NEXT_LINK
        assert second_call[1]["params"] is None

    @pytest.mark.asyncio
    async def test_delta_load_keeps_every_change(self):
        self.client.get_json.return_value = {
            "value": [
                graph_user("off@contoso.com", enabled=False),
                graph_user("gone@contoso.com", **{"@removed": {"reason": "changed"}}),
                {"id": "deleted-id", "@removed": {"reason": "deleted"}},
            ],
            "@odata.deltaLink": DELTA_LINK,
        }

        result = await self.loader.load_changes("https://graph.microsoft.com/old-delta")

        assert [r.key for r in result.records] == ["off@contoso.com", "gone@contoso.com"]
        assert result.records[1].is_deleted is True
        assert result.removed_ids == ["deleted-id"]
        assert result.cursor == DELTA_LINK
        assert self.client.get_json.call_args[0][0] == "https://graph.microsoft.com/old-delta"

    @pytest.mark.asyncio
    async def test_missing_links_is_an_error(self):
        self.client.get_json.return_value = {"value": []}

        with pytest.raises(DirectoryLoaderError, match="delta link"):
            await self.loader.load_all()

    @pytest.mark.asyncio
    async def test_invalid_cursor_propagates(self):
        self.client.get_json.side_effect = InvalidCursorError("expired", status_code=410)

        with pytest.raises(InvalidCursorError):
            await self.loader.load_changes("stale")

    @pytest.mark.asyncio
    async def test_cancellation_between_pages(self):
        cancel_event = asyncio.Event()
        loader = GraphUserDataLoader(self.client, cancel_event=cancel_event)

        async def first_page(*args, **kwargs):
            cancel_event.set()
            return {"value": [graph_user("a@contoso.com")], "@odata.nextLink": NEXT_LINK}

        self.client.get_json.side_effect = first_page

        with pytest.raises(asyncio.CancelledError):
            await loader.load_all()

        assert self.client.get_json.await_count == 1

    @pytest.mark.asyncio
    async def test_aclose_closes_client(self):
        async with self.loader:
            pass

        self.client.aclose.assert_awaited_once()
