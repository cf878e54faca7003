"""Directory loader backed by the Microsoft Graph users delta query."""

import logging
from typing import Any, Dict, Optional, Tuple

from ..errors import DirectoryLoaderError
from ..models import MEMBER_USER_TYPE, IdentityRecord, LoadResult, parse_datetime
from .base import DirectoryDataLoader
from .graph_client import GraphClient

logger = logging.getLogger(__name__)

USERS_DELTA_PATH = "/v1.0/users/delta"

USER_SELECT_PROPERTIES = [
    "id",
    "userPrincipalName",
    "displayName",
    "givenName",
    "surname",
    "mail",
    "department",
    "jobTitle",
    "officeLocation",
    "city",
    "country",
    "state",
    "companyName",
    "employeeType",
    "employeeHireDate",
    "accountEnabled",
    "userType",
]

# Graph property -> IdentityRecord field
_FIELD_MAP = {
    "id": "id",
    "userPrincipalName": "user_principal_name",
    "displayName": "display_name",
    "givenName": "given_name",
    "surname": "surname",
    "mail": "mail",
    "department": "department",
    "jobTitle": "job_title",
    "officeLocation": "office_location",
    "city": "city",
    "country": "country",
    "state": "state",
    "companyName": "company_name",
    "employeeType": "employee_type",
    "accountEnabled": "account_enabled",
    "userType": "user_type",
}


def user_to_record(user: Dict[str, Any]) -> Optional[IdentityRecord]:
    """
    Map a Graph user (or delta entry) to a record.

    Returns None for entries without a principal name, which is how Graph
    reports most removals.
    """
    upn = (user.get("userPrincipalName") or "").strip()
    if not upn:
        return None

    data = {field: user.get(prop) for prop, field in _FIELD_MAP.items()}
    data["user_principal_name"] = upn
    data["id"] = user.get("id") or ""
    data["hire_date"] = parse_datetime(user.get("employeeHireDate"))
    data["is_deleted"] = "@removed" in user
    return IdentityRecord(**data)


def is_enabled_member(user: Dict[str, Any]) -> bool:
    return user.get("accountEnabled") is True and user.get("userType") == MEMBER_USER_TYPE


class GraphUserDataLoader(DirectoryDataLoader):
    """
    Loads users through ``/users/delta``.

    A full load starts a new delta round and keeps only enabled members; a
    delta load resumes from the stored ``@odata.deltaLink``. Both follow
    ``@odata.nextLink`` until Graph hands out the next delta link, which is
    returned as the cursor.
    """

    def __init__(self, client: GraphClient, cancel_event=None):
        super().__init__(cancel_event)
        self.client = client

    def _page_headers(self) -> Dict[str, str]:
        return {"Prefer": f"odata.maxpagesize={self.client.settings.page_size}"}

    async def _fetch_page(
        self, url: str, params: Optional[Dict[str, str]] = None
    ) -> Tuple[list, Optional[str], Optional[str]]:
        page = await self.client.get_json(url, params=params, headers=self._page_headers())
        return page.get("value", []), page.get("@odata.nextLink"), page.get("@odata.deltaLink")

    async def _collect(self, url: str, params: Optional[Dict[str, str]], full: bool) -> LoadResult:
        result = LoadResult()
        pages = 0
        skipped = 0
        while True:
            self.check_cancelled()
            users, next_link, delta_link = await self._fetch_page(url, params)
            pages += 1

            for user in users:
                if full and not is_enabled_member(user):
                    skipped += 1
                    continue
                record = user_to_record(user)
                if record is not None:
                    result.records.append(record)
                elif "@removed" in user and user.get("id"):
                    result.removed_ids.append(user["id"])
                else:
                    skipped += 1
                    logger.debug(f"Skipping directory entry without principal name: {user.get('id')}")

            if next_link:
                url, params = next_link, None
                continue
            if not delta_link:
                raise DirectoryLoaderError("Delta query ended without a next or delta link")
            result.cursor = delta_link
            break

        logger.debug(f"Read {pages} pages from Graph, skipped {skipped} entries")
        return result

    async def load_all(self) -> LoadResult:
        logger.info("Loading all users from Microsoft Graph with delta query initialization")
        params = {"$select": ",".join(USER_SELECT_PROPERTIES)}
        result = await self._collect(USERS_DELTA_PATH, params, full=True)
        logger.info(f"Loaded {len(result.records)} users from Microsoft Graph")
        return result

    async def load_changes(self, cursor: str) -> LoadResult:
        logger.info("Loading delta changes from Microsoft Graph")
        result = await self._collect(cursor, None, full=False)
        logger.info(
            f"Loaded {len(result.records)} changes from Microsoft Graph "
            f"({len(result.removed_ids)} removals by id)"
        )
        return result

    async def aclose(self) -> None:
        await self.client.aclose()
