"""Structured logging helpers (PII-safe)."""

from typing import Any


def build_log_context(
    *,
    job_id: str | None = None,
    job_type: str | None = None,
    repair_order_id: int | None = None,
    notification_id: int | None = None,
    sheet: str | None = None,
    route: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict."""
    context: dict[str, Any] = {}
    if job_id:
        context["job_id"] = job_id
    if job_type:
        context["job_type"] = job_type
    if repair_order_id is not None:
        context["repair_order_id"] = repair_order_id
    if notification_id is not None:
        context["notification_id"] = notification_id
    if sheet:
        context["sheet"] = sheet
    if route:
        context["route"] = route
    return context
