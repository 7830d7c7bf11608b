"""Excel workbook session and JSON batch client.

A workbook session is scoped to one logical operation (one push, one pull,
one move). Use ``workbook_session`` so the session is closed on every exit
path; changes made in a session that is never closed are not persisted.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator
from urllib.parse import quote

import httpx

from ro_sync.core.config import settings
from ro_sync.core.constants import MAX_BATCH_SIZE
from ro_sync.core.errors import (
    BatchSizeExceededError,
    ConfigurationError,
    GraphAPIError,
    RateLimitedError,
)
from ro_sync.services.excel_mapping import row_address
from ro_sync.services.graph_service import GraphRequester

logger = logging.getLogger(__name__)

SESSION_HEADER = "workbook-session-id"


@dataclass
class WorkbookSession:
    client: GraphRequester
    workbook_path: str
    session_id: str
    closed: bool = False

    @property
    def headers(self) -> dict[str, str]:
        return {SESSION_HEADER: self.session_id}

    def worksheet_path(self, sheet: str) -> str:
        return worksheet_path(self.workbook_path, sheet)

    async def get(self, path: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        return await self.client.request("GET", path, params=params, headers=self.headers)


@dataclass
class BatchResponse:
    id: str
    status: int
    body: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400

    @property
    def rate_limited(self) -> bool:
        return self.status == 429


@dataclass
class BatchAnalysis:
    success_count: int = 0
    failed_count: int = 0
    rate_limited: bool = False
    error_messages: list[str] = field(default_factory=list)


# =============================================================================
# Paths and request builders
# =============================================================================


def build_workbook_path(workbook_id: str | None = None) -> str:
    """SharePoint site drive when configured, otherwise the user's OneDrive."""
    workbook_id = workbook_id or settings.EXCEL_WORKBOOK_ID
    if not workbook_id:
        raise ConfigurationError("EXCEL_WORKBOOK_ID is not configured")
    if settings.uses_sharepoint:
        return (
            f"/sites/{settings.SHAREPOINT_HOSTNAME}:{settings.SHAREPOINT_SITE_PATH}:"
            f"/drive/items/{workbook_id}/workbook"
        )
    return f"/me/drive/items/{workbook_id}/workbook"


def worksheet_path(workbook_path: str, sheet: str) -> str:
    # Single quotes inside an OData string literal are doubled.
    literal = quote(sheet.replace("'", "''"), safe="")
    return f"{workbook_path}/worksheets('{literal}')"


def range_path(workbook_path: str, sheet: str, address: str) -> str:
    return f"{worksheet_path(workbook_path, sheet)}/range(address='{address}')"


def build_row_update_request(
    request_id: int | str,
    workbook_path: str,
    sheet: str,
    row: int,
    values: list[Any],
) -> dict[str, Any]:
    return {
        "id": str(request_id),
        "method": "PATCH",
        "url": range_path(workbook_path, sheet, row_address(row)),
        "headers": {"Content-Type": "application/json"},
        "body": {"values": [values]},
    }


def build_row_delete_request(
    request_id: int | str,
    workbook_path: str,
    sheet: str,
    row: int,
) -> dict[str, Any]:
    return {
        "id": str(request_id),
        "method": "POST",
        "url": f"{range_path(workbook_path, sheet, row_address(row))}/delete",
        "headers": {"Content-Type": "application/json"},
        "body": {"shift": "Up"},
    }


def chunk_requests(requests: list[dict[str, Any]], size: int = MAX_BATCH_SIZE) -> list[list[dict[str, Any]]]:
    return [requests[start : start + size] for start in range(0, len(requests), size)]


# =============================================================================
# Session lifecycle
# =============================================================================


async def open_session(
    client: GraphRequester, workbook_id: str | None = None
) -> WorkbookSession:
    """Create a persistent workbook session."""
    workbook_path = build_workbook_path(workbook_id)
    payload = await client.request(
        "POST", f"{workbook_path}/createSession", json_body={"persistChanges": True}
    )
    session_id = payload.get("id")
    if not session_id:
        raise GraphAPIError(500, "createSession returned no session id")
    logger.info("Opened workbook session")
    return WorkbookSession(client=client, workbook_path=workbook_path, session_id=session_id)


async def close_session(session: WorkbookSession) -> None:
    """Close the session once. Close failures are logged, never raised."""
    if session.closed:
        return
    session.closed = True
    try:
        await session.client.request(
            "POST", f"{session.workbook_path}/closeSession", headers=session.headers
        )
        logger.info("Closed workbook session")
    except (GraphAPIError, RateLimitedError, httpx.HTTPError) as e:
        logger.warning("Failed to close workbook session: %s", type(e).__name__)


@asynccontextmanager
async def workbook_session(
    client: GraphRequester, workbook_id: str | None = None
) -> AsyncIterator[WorkbookSession]:
    session = await open_session(client, workbook_id)
    try:
        yield session
    finally:
        await close_session(session)


# =============================================================================
# Batch execution
# =============================================================================


async def execute_batch(
    session: WorkbookSession, requests: list[dict[str, Any]]
) -> list[BatchResponse]:
    """
    Execute up to MAX_BATCH_SIZE requests in one $batch call.

    Larger lists are a programming error and are rejected before anything
    is sent. Responses come back ordered by request id.
    """
    if len(requests) > MAX_BATCH_SIZE:
        raise BatchSizeExceededError(len(requests), MAX_BATCH_SIZE)
    if not requests:
        return []

    batch_requests = []
    for request in requests:
        headers = {**request.get("headers", {}), **session.headers}
        batch_requests.append({**request, "headers": headers})

    payload = await session.client.request(
        "POST", "/$batch", json_body={"requests": batch_requests}
    )

    responses = [
        BatchResponse(
            id=str(item.get("id")),
            status=int(item.get("status", 0)),
            body=item.get("body") if isinstance(item.get("body"), dict) else None,
        )
        for item in payload.get("responses", [])
    ]
    responses.sort(key=lambda r: int(r.id) if r.id.isdigit() else r.id)
    return responses


def _response_error(response: BatchResponse) -> str:
    body = response.body or {}
    error = body.get("error")
    if isinstance(error, dict):
        message = error.get("message") or error.get("code")
    else:
        message = error
    return f"Request {response.id}: {message or f'status {response.status}'}"


def analyze_batch_response(responses: list[BatchResponse]) -> BatchAnalysis:
    """Count successes/failures and flag any rate limiting."""
    analysis = BatchAnalysis()
    for response in responses:
        if response.ok:
            analysis.success_count += 1
            continue
        analysis.failed_count += 1
        if response.rate_limited:
            analysis.rate_limited = True
        analysis.error_messages.append(_response_error(response))
    return analysis


def raise_if_rate_limited(analysis: BatchAnalysis) -> None:
    if analysis.rate_limited:
        raise RateLimitedError("Rate limited by Graph API during batch execution")
