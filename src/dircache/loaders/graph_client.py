"""Minimal Microsoft Graph HTTP client on aiohttp."""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import aiohttp

from ..config import GraphSettings
from ..errors import AuthenticationError, DirectoryLoaderError, InvalidCursorError
from ..models import utc_now

logger = logging.getLogger(__name__)

# Tokens are renewed this long before they expire
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)

INVALID_CURSOR_CODES = {"syncStateNotFound", "resyncRequired", "syncStateInvalid"}

# Failures of the transport itself, including timeouts and undecodable bodies
TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError)


@dataclass
class GraphResponse:
    """Raw response of a non-JSON request."""

    status: int
    text: str
    reason: Optional[str] = None
    location: Optional[str] = None


def error_from_response(status: int, body: str, reason: Optional[str] = None) -> DirectoryLoaderError:
    """Map a failed Graph response to the loader error hierarchy."""
    code = None
    message = body[:500] if body else (reason or "")
    try:
        error = json.loads(body).get("error", {}) if body else {}
        if isinstance(error, dict):
            code = error.get("code")
            message = error.get("message") or message
    except (ValueError, AttributeError):
        pass

    text = f"Graph request failed with {status}" + (f" ({code})" if code else "") + f": {message}"
    if status in (401, 403):
        return AuthenticationError(text, status_code=status)
    if status == 410 or code in INVALID_CURSOR_CODES:
        return InvalidCursorError(text, status_code=status)
    return DirectoryLoaderError(text, status_code=status)


class GraphClient:
    """
    Authenticated access to Microsoft Graph using the client-credentials flow.

    The session and the access token are owned by the client and reused across
    calls until ``aclose``.
    """

    def __init__(
        self,
        settings: GraphSettings,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings
        self._session = session
        self._owns_session = session is None
        self._clock = clock
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.settings.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    def resolve_url(self, path: str) -> str:
        """Return ``path`` unchanged if absolute, else prefix it with the Graph base URL."""
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.settings.base_url.rstrip('/')}/{path.lstrip('/')}"

    async def get_access_token(self) -> str:
        """Return a cached token, acquiring a new one when it is close to expiry."""
        now = self._clock()
        if (
            self._token
            and self._token_expires_at
            and self._token_expires_at > now + TOKEN_REFRESH_MARGIN
        ):
            return self._token

        self.settings.require_valid()
        logger.debug("Acquiring new access token for Microsoft Graph")
        data = {
            "grant_type": "client_credentials",
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
            "scope": self.settings.scope,
        }
        try:
            async with self.session.post(self.settings.token_url, data=data) as response:
                body = await response.text()
                if response.status != 200:
                    raise AuthenticationError(
                        f"Token request failed with {response.status}: {body[:200]}",
                        status_code=response.status,
                    )
                payload = json.loads(body)
        except aiohttp.ClientError as e:
            raise AuthenticationError(f"Token request failed: {e}", cause=e)
        except asyncio.TimeoutError as e:
            raise DirectoryLoaderError("Token request timed out", cause=e)
        except ValueError as e:
            raise AuthenticationError("Token endpoint returned invalid JSON", cause=e)

        if "access_token" not in payload:
            raise AuthenticationError("Token endpoint response has no access_token")

        self._token = payload["access_token"]
        self._token_expires_at = now + timedelta(seconds=int(payload.get("expires_in", 3600)))
        logger.debug("Successfully acquired access token")
        return self._token

    async def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {await self.get_access_token()}"}

    async def get_json(
        self,
        url: str,
        params: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        GET a JSON document.

        Raises:
            AuthenticationError: On 401/403
            InvalidCursorError: When Graph rejects a delta cursor
            DirectoryLoaderError: On any other failure
        """
        headers = {**(headers or {}), **await self._auth_headers()}
        try:
            async with self.session.get(
                self.resolve_url(url), params=params, headers=headers
            ) as response:
                body = await response.text()
                if response.status != 200:
                    raise error_from_response(response.status, body, response.reason)
        except TRANSPORT_ERRORS as e:
            raise DirectoryLoaderError(f"Graph request failed: {e!r}", cause=e)

        try:
            return json.loads(body)
        except ValueError as e:
            raise DirectoryLoaderError("Graph returned invalid JSON", status_code=200, cause=e)

    async def get_raw(
        self, url: str, authorized: bool = True, allow_redirects: bool = True
    ) -> GraphResponse:
        """GET a document without interpreting the status code."""
        headers = await self._auth_headers() if authorized else {}
        try:
            async with self.session.get(
                self.resolve_url(url), headers=headers, allow_redirects=allow_redirects
            ) as response:
                return GraphResponse(
                    status=response.status,
                    text=await response.text(),
                    reason=response.reason,
                    location=response.headers.get("Location"),
                )
        except TRANSPORT_ERRORS as e:
            raise DirectoryLoaderError(f"Graph request failed: {e!r}", cause=e)

    async def aclose(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
