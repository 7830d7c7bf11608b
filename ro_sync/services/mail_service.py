"""Outlook mail via Microsoft Graph.

``sendMail`` and ``reply`` return no ids, so after sending we look the
message up in Sent Items to capture its internetMessageId and
conversationId for threading the next follow-up.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from ro_sync.core.config import settings
from ro_sync.core.errors import GraphAPIError, RateLimitedError
from ro_sync.jobs.utils import mask_email
from ro_sync.services.graph_service import GraphRequester

logger = logging.getLogger(__name__)

SENT_ITEMS_PATH = "/me/mailFolders/SentItems/messages"
# Allow for clock drift between this host and the mail server.
SENT_LOOKUP_SKEW = timedelta(seconds=30)


@dataclass
class SentMessage:
    internet_message_id: str | None = None
    conversation_id: str | None = None
    message_id: str | None = None
    replied: bool = False


def _recipients(addresses: str | list[str] | None) -> list[dict[str, Any]]:
    if not addresses:
        return []
    if isinstance(addresses, str):
        addresses = [part.strip() for part in addresses.replace(";", ",").split(",")]
    return [{"emailAddress": {"address": address}} for address in addresses if address]


def _graph_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _odata_string(value: str) -> str:
    return value.replace("'", "''")


def follow_up_subject(subject: str) -> str:
    prefix = f"[{settings.COMPANY_NAME} Follow-Up]"
    return subject if subject.startswith(prefix) else f"{prefix} {subject}"


async def find_message_by_internet_id(
    client: GraphRequester, internet_message_id: str
) -> str | None:
    """Graph id of the mailbox message with this internetMessageId, if any."""
    payload = await client.request(
        "GET",
        "/me/messages",
        params={
            "$filter": f"internetMessageId eq '{_odata_string(internet_message_id)}'",
            "$select": "id",
            "$top": "1",
        },
    )
    messages = payload.get("value") or []
    return messages[0].get("id") if messages else None


async def find_sent_message(
    client: GraphRequester,
    *,
    to: str,
    sent_after: datetime,
    attempts: int = 3,
    delay_seconds: float = 2.0,
) -> SentMessage:
    """Most recent Sent Items message to ``to`` sent after ``sent_after``."""
    target = to.strip().lower()
    params = {
        "$filter": f"sentDateTime ge {_graph_datetime(sent_after - SENT_LOOKUP_SKEW)}",
        "$orderby": "sentDateTime desc",
        "$top": "10",
        "$select": "id,internetMessageId,conversationId,toRecipients,sentDateTime",
    }
    for attempt in range(attempts):
        payload = await client.request("GET", SENT_ITEMS_PATH, params=params)
        for message in payload.get("value") or []:
            addresses = {
                (recipient.get("emailAddress") or {}).get("address", "").lower()
                for recipient in message.get("toRecipients") or []
            }
            if target in addresses:
                return SentMessage(
                    internet_message_id=message.get("internetMessageId"),
                    conversation_id=message.get("conversationId"),
                    message_id=message.get("id"),
                )
        if attempt + 1 < attempts:
            await asyncio.sleep(delay_seconds)

    logger.warning("Sent message not found in Sent Items for %s", mask_email(to))
    return SentMessage()


async def send_email(
    client: GraphRequester,
    *,
    to: str,
    subject: str,
    body: str,
    cc: str | list[str] | None = None,
    reply_to_message_id: str | None = None,
    lookup_delay_seconds: float = 2.0,
) -> SentMessage:
    """
    Send an HTML email, replying on the earlier thread when one is known.

    If the earlier message is gone from the mailbox a new message is sent.
    Once the send has gone out, a failed Sent Items lookup returns a
    SentMessage without ids instead of raising.
    """
    sent_after = datetime.now(timezone.utc)
    message: dict[str, Any] = {
        "toRecipients": _recipients(to),
        "ccRecipients": _recipients(cc),
        "body": {"contentType": "HTML", "content": body},
    }

    replied = False
    if reply_to_message_id:
        original_id = await find_message_by_internet_id(client, reply_to_message_id)
        if original_id:
            await client.request(
                "POST", f"/me/messages/{original_id}/reply", json_body={"message": message}
            )
            replied = True
        else:
            logger.info("Earlier thread message not found; sending a new message")

    if not replied:
        await client.request(
            "POST",
            "/me/sendMail",
            json_body={
                "message": {**message, "subject": follow_up_subject(subject)},
                "saveToSentItems": True,
            },
        )

    logger.info("Email sent to=%s replied=%s", mask_email(to), replied)
    try:
        sent = await find_sent_message(
            client, to=to, sent_after=sent_after, delay_seconds=lookup_delay_seconds
        )
    except (GraphAPIError, RateLimitedError, httpx.HTTPError) as e:
        logger.warning("Sent Items lookup failed after send: %s", type(e).__name__)
        sent = SentMessage()
    sent.replied = replied
    return sent
