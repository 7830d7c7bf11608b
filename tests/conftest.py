"""
Test configuration and fixtures.

Provides:
- In-memory SQLite session with all tables created (fresh per test)
- FakeWorkbook: an in-memory stand-in for the Graph workbook + $batch API
- FakeMailbox: an in-memory stand-in for Graph mail, To-Do and calendar
- RecordingScheduler: captures trigger/sleep calls instead of writing jobs
"""
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Generator
from urllib.parse import unquote

# Settings are read at import time.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["FERNET_KEY"] = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="
os.environ["EXCEL_WORKBOOK_ID"] = "wb-1"
os.environ["SHAREPOINT_HOSTNAME"] = ""
os.environ["SHAREPOINT_SITE_PATH"] = ""
os.environ["FOLLOW_UP_CC_EMAIL"] = ""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ro_sync.core.errors import GraphAPIError
from ro_sync.db.base import Base
import ro_sync.db.models  # noqa: F401
from ro_sync.db.enums import JobType
from ro_sync.db.models import RepairOrder, Shop
from ro_sync.services.excel_mapping import COLUMN_COUNT, header_row


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh in-memory database per test. App code may commit freely."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def make_repair_order(db: Session):
    def _make(**values: Any) -> RepairOrder:
        record = RepairOrder(**values)
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    return _make


@pytest.fixture
def make_shop(db: Session):
    def _make(business_name: str, email: str | None) -> Shop:
        shop = Shop(business_name=business_name, email=email)
        db.add(shop)
        db.commit()
        return shop

    return _make


# =============================================================================
# Workbook fake
# =============================================================================

_SHEET = re.compile(r"worksheets\('((?:[^']|'')*)'\)")
_ADDRESS = re.compile(r"range\(address='[A-Z]+(\d+)(?::[A-Z]+\d+)?'\)")


def _sheet_name(path: str) -> str:
    match = _SHEET.search(path)
    assert match, f"no worksheet in {path}"
    return unquote(match.group(1)).replace("''", "'")


def _row_number(path: str) -> int:
    match = _ADDRESS.search(path)
    assert match, f"no range address in {path}"
    return int(match.group(1))


def _blank_row() -> list[Any]:
    return [""] * COLUMN_COUNT


class FakeWorkbook:
    """
    In-memory workbook reachable through the same request() surface as
    GraphClient. Each sheet is a list of rows; rows[0] is the header.
    """

    def __init__(self, sheets: dict[str, list[list[Any]]] | None = None) -> None:
        self.sheets: dict[str, list[list[Any]]] = {}
        for name, rows in (sheets or {"Active": []}).items():
            self.sheets[name] = [header_row()] + [self._pad(row) for row in rows]
        self.calls: list[tuple[str, str]] = []
        self.batches: list[list[dict[str, Any]]] = []
        self.sessions_opened = 0
        self.sessions_closed = 0
        # 1-based batch number answered with 429 for every request
        self.rate_limit_batch: int | None = None
        self.fail_deletes = False
        self.fail_writes_to: set[str] = set()

    @staticmethod
    def _pad(row: list[Any]) -> list[Any]:
        return list(row) + [""] * (COLUMN_COUNT - len(row))

    def data_rows(self, sheet: str) -> list[list[Any]]:
        return [row for row in self.sheets[sheet][1:] if any(cell not in ("", None) for cell in row)]

    def keys(self, sheet: str) -> list[Any]:
        return [row[0] for row in self.data_rows(sheet)]

    async def __aenter__(self) -> "FakeWorkbook":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None

    async def request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        self.calls.append((method, path))
        if path.endswith("/createSession"):
            self.sessions_opened += 1
            return {"id": f"session-{self.sessions_opened}"}
        if path.endswith("/closeSession"):
            self.sessions_closed += 1
            return {}
        if path == "/$batch":
            return self._batch(json_body["requests"])
        if method == "GET" and "usedRange" in path:
            rows = self._trimmed(_sheet_name(path))
            return {"rowCount": len(rows), "values": rows}
        if method == "GET" and "range(address='A2:A10000')" in path:
            rows = self.sheets[_sheet_name(path)][1:]
            return {"values": [[row[0]] for row in rows]}
        raise AssertionError(f"unexpected request {method} {path}")

    def _trimmed(self, sheet: str) -> list[list[Any]]:
        rows = self.sheets[sheet]
        end = len(rows)
        while end > 1 and all(cell in ("", None) for cell in rows[end - 1]):
            end -= 1
        return rows[:end]

    def _batch(self, requests: list[dict[str, Any]]) -> dict[str, Any]:
        self.batches.append(requests)
        if self.rate_limit_batch == len(self.batches):
            return {
                "responses": [
                    {"id": req["id"], "status": 429, "body": {"error": {"code": "TooManyRequests"}}}
                    for req in requests
                ]
            }
        responses = []
        for req in requests:
            sheet = _sheet_name(req["url"])
            row = _row_number(req["url"])
            rows = self.sheets.setdefault(sheet, [header_row()])
            if req["url"].endswith("/delete"):
                if self.fail_deletes:
                    responses.append({"id": req["id"], "status": 500, "body": {"error": {"message": "delete failed"}}})
                    continue
                del rows[row - 1]
                responses.append({"id": req["id"], "status": 204})
                continue
            if sheet in self.fail_writes_to:
                responses.append({"id": req["id"], "status": 400, "body": {"error": {"message": "write failed"}}})
                continue
            while len(rows) < row:
                rows.append(_blank_row())
            rows[row - 1] = self._pad(req["body"]["values"][0])
            responses.append({"id": req["id"], "status": 200, "body": {}})
        # Graph does not promise response order.
        return {"responses": list(reversed(responses))}


@pytest.fixture
def workbook() -> FakeWorkbook:
    return FakeWorkbook()


# =============================================================================
# Mailbox fake
# =============================================================================

class FakeMailbox:
    """Mail, To-Do and calendar endpoints backed by lists."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.replies: list[tuple[str, dict[str, Any]]] = []
        self.tasks: list[dict[str, Any]] = []
        self.events: list[dict[str, Any]] = []
        self.known_messages: dict[str, str] = {}
        self.fail_send = False
        # Exceptions raised (once each) by the Sent Items and calendar endpoints.
        self.sent_lookup_errors: list[Exception] = []
        self.calendar_errors: list[Exception] = []
        self.closed = 0

    async def __aenter__(self) -> "FakeMailbox":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.closed += 1

    def _last_recipient(self) -> str | None:
        if self.replies:
            message = self.replies[-1][1]
        elif self.sent:
            message = self.sent[-1]
        else:
            return None
        return message["toRecipients"][0]["emailAddress"]["address"]

    async def request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        if path == "/me/sendMail":
            if self.fail_send:
                raise GraphAPIError(503, "Service unavailable")
            self.sent.append(json_body["message"])
            return {}
        if path.startswith("/me/messages/") and path.endswith("/reply"):
            message_id = path.split("/")[3]
            self.replies.append((message_id, json_body["message"]))
            return {}
        if path == "/me/messages":
            match = re.search(r"internetMessageId eq '(.*)'", params["$filter"])
            message_id = self.known_messages.get(match.group(1).replace("''", "'"))
            return {"value": [{"id": message_id}] if message_id else []}
        if path == "/me/mailFolders/SentItems/messages":
            if self.sent_lookup_errors:
                raise self.sent_lookup_errors.pop(0)
            to = self._last_recipient()
            if to is None:
                return {"value": []}
            number = len(self.sent) + len(self.replies)
            return {
                "value": [
                    {
                        "id": f"graph-{number}",
                        "internetMessageId": f"<msg-{number}@example.com>",
                        "conversationId": "conv-1",
                        "toRecipients": [{"emailAddress": {"address": to}}],
                    }
                ]
            }
        if path == "/me/todo/lists":
            return {"value": [{"id": "list-1", "wellknownListName": "defaultList"}]}
        if path.startswith("/me/todo/lists/") and path.endswith("/tasks"):
            self.tasks.append(json_body)
            return {"id": f"task-{len(self.tasks)}"}
        if path == "/me/calendar/events":
            if self.calendar_errors:
                raise self.calendar_errors.pop(0)
            self.events.append(json_body)
            return {"id": f"event-{len(self.events)}"}
        raise AssertionError(f"unexpected request {method} {path}")


@pytest.fixture
def mailbox() -> FakeMailbox:
    return FakeMailbox()


# =============================================================================
# Scheduler fake
# =============================================================================

@dataclass
class RecordingScheduler:
    triggered: list[tuple[JobType, dict[str, Any], str | None]] = field(default_factory=list)
    slept: list[tuple[JobType, dict[str, Any], timedelta, str]] = field(default_factory=list)
    waited: list[tuple[JobType, dict[str, Any]]] = field(default_factory=list)
    wait_result: dict[str, Any] = field(default_factory=dict)

    def trigger(self, job_type, payload, *, idempotency_key=None):
        self.triggered.append((job_type, payload, idempotency_key))

    async def trigger_and_wait(self, job_type, payload):
        self.waited.append((job_type, payload))
        return self.wait_result

    def sleep(self, job_type, payload, *, duration, idempotency_key):
        self.slept.append((job_type, payload, duration, idempotency_key))

    def on_failure(self, job_type, hook):
        pass

    def triggered_types(self) -> list[JobType]:
        return [job_type for job_type, _, _ in self.triggered]


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def make_workbook():
    return FakeWorkbook
