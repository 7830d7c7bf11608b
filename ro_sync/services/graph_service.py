"""Microsoft Graph HTTP client.

One ``GraphClient`` is created per job invocation from the user's stored
credentials and closed when the job finishes. Nothing here is cached across
jobs.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from sqlalchemy.orm import Session

from ro_sync.core.config import settings
from ro_sync.core.errors import GraphAPIError, RateLimitedError
from ro_sync.services import oauth_service

logger = logging.getLogger(__name__)


class GraphRequester(Protocol):
    """Anything that can send a Graph request (GraphClient, test fakes)."""

    async def request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]: ...


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error.get("code") or "")
        if error:
            return str(error)
    return response.reason_phrase


def _retry_after(response: httpx.Response) -> int | None:
    raw = response.headers.get("Retry-After")
    if raw and raw.isdigit():
        return int(raw)
    return None


class GraphClient:
    """Thin async wrapper around httpx with Graph error mapping."""

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.MS_GRAPH_BASE_URL,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout or settings.GRAPH_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def __aenter__(self) -> "GraphClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """
        Send one request and return the decoded JSON body ({} when empty).

        429 raises RateLimitedError; any other non-2xx raises GraphAPIError.
        """
        response = await self._client.request(
            method, path, json=json_body, params=params, headers=headers
        )

        if response.status_code == 429:
            logger.warning("Graph rate limited method=%s path=%s", method, path)
            raise RateLimitedError(retry_after=_retry_after(response))
        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning(
                "Graph request failed method=%s path=%s status=%s",
                method,
                path,
                response.status_code,
            )
            raise GraphAPIError(response.status_code, message)

        if not response.content:
            return {}
        try:
            decoded = response.json()
        except ValueError:
            return {}
        return decoded if isinstance(decoded, dict) else {"value": decoded}

    async def get(self, path: str, **kwargs: Any) -> dict[str, Any]:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> dict[str, Any]:
        return await self.request("POST", path, **kwargs)


async def get_graph_client(
    db: Session,
    user_id: str,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> GraphClient:
    """Build a client for the user. Raises UserNotConnectedError/TokenRefreshError."""
    access_token = await oauth_service.get_access_token(db, user_id)
    return GraphClient(access_token, transport=transport)
