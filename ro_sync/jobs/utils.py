"""Shared helpers for worker job handlers."""

from __future__ import annotations

from typing import Any

from ro_sync.core.errors import TerminalJobError


def mask_email(email: str | None) -> str:
    if not email:
        return ""
    local, _, domain = email.partition("@")
    prefix = local[:3] if local else ""
    return f"{prefix}...@{domain}" if domain else f"{prefix}..."


def require_payload(job: Any, *keys: str) -> dict[str, Any]:
    """Return the job payload, failing the job for good if keys are missing."""
    payload = job.payload or {}
    missing = [key for key in keys if payload.get(key) in (None, "", [])]
    if missing:
        raise TerminalJobError(f"Missing {', '.join(missing)} in job payload")
    return payload


def store_result(job: Any, result: dict[str, Any]) -> None:
    """Attach the handler's outcome to the job for operators."""
    job.payload = {**(job.payload or {}), "result": result}
