"""Microsoft To-Do tasks and calendar events used as follow-up reminders."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone

from ro_sync.core.config import settings
from ro_sync.core.errors import GraphAPIError
from ro_sync.services.graph_service import GraphRequester

logger = logging.getLogger(__name__)

# Reminders land at this time (UTC) on their due day.
REMINDER_TIME = time(hour=9)
EVENT_DURATION = timedelta(minutes=30)


def _graph_datetime(value: datetime) -> dict[str, str]:
    return {
        "dateTime": value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S"),
        "timeZone": "UTC",
    }


async def get_default_task_list_id(client: GraphRequester) -> str:
    payload = await client.request("GET", "/me/todo/lists")
    lists = payload.get("value") or []
    for task_list in lists:
        if task_list.get("wellknownListName") == "defaultList":
            return task_list["id"]
    if lists:
        return lists[0]["id"]
    raise GraphAPIError(404, "No Microsoft To Do lists found")


async def create_todo_task(
    client: GraphRequester, *, title: str, due_date: date, content: str
) -> str:
    task_list_id = await get_default_task_list_id(client)
    reminder_at = datetime.combine(due_date, REMINDER_TIME, tzinfo=timezone.utc)
    payload = await client.request(
        "POST",
        f"/me/todo/lists/{task_list_id}/tasks",
        json_body={
            "title": f"[{settings.COMPANY_NAME}] {title}",
            "dueDateTime": {"dateTime": due_date.isoformat(), "timeZone": "UTC"},
            "body": {"contentType": "text", "content": content},
            "isReminderOn": True,
            "reminderDateTime": _graph_datetime(reminder_at),
        },
    )
    return payload.get("id", "")


async def create_calendar_event(
    client: GraphRequester, *, subject: str, day: date, description: str
) -> str:
    start = datetime.combine(day, REMINDER_TIME, tzinfo=timezone.utc)
    payload = await client.request(
        "POST",
        "/me/calendar/events",
        json_body={
            "subject": f"[{settings.COMPANY_NAME} RO Reminder] {subject}",
            "body": {"contentType": "text", "content": description},
            "start": _graph_datetime(start),
            "end": _graph_datetime(start + EVENT_DURATION),
            "isReminderOn": True,
            "reminderMinutesBeforeStart": 60,
        },
    )
    return payload.get("id", "")
