"""OAuth integration service.

Stores encrypted Microsoft tokens per-user and exchanges the stored refresh
token for a fresh access token when one is needed.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from cryptography.fernet import Fernet
from sqlalchemy.orm import Session

from ro_sync.core.config import settings
from ro_sync.core.errors import TokenRefreshError, UserNotConnectedError
from ro_sync.db.models import UserIntegration

logger = logging.getLogger(__name__)

MICROSOFT_INTEGRATION = "microsoft"
# Refresh this long before the stored expiry to avoid mid-operation expiry.
EXPIRY_SKEW = timedelta(minutes=5)


def _now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def _is_expired(expires_at: datetime) -> bool:
    """Return True if expires_at is within the skew window (treat naive datetimes as UTC)."""
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at - EXPIRY_SKEW <= _now_utc()


# ============================================================================
# Token Encryption
# ============================================================================


def _get_fernet() -> Fernet:
    """Get Fernet instance for encryption/decryption."""
    key = settings.FERNET_KEY
    if not key:
        raise ValueError("FERNET_KEY not configured")
    return Fernet(key.encode())


def encrypt_token(token: str) -> str:
    """Encrypt a token for storage."""
    fernet = _get_fernet()
    return fernet.encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt a stored token."""
    fernet = _get_fernet()
    return fernet.decrypt(encrypted_token.encode()).decode()


# ============================================================================
# Integration CRUD
# ============================================================================


def get_user_integration(
    db: Session, user_id: str, integration_type: str = MICROSOFT_INTEGRATION
) -> UserIntegration | None:
    """Get a user's integration by type."""
    return (
        db.query(UserIntegration)
        .filter(
            UserIntegration.user_id == user_id,
            UserIntegration.integration_type == integration_type,
        )
        .first()
    )


def save_integration(
    db: Session,
    user_id: str,
    access_token: str | None,
    refresh_token: str | None = None,
    expires_in: int | None = None,
    account_email: str | None = None,
    integration_type: str = MICROSOFT_INTEGRATION,
) -> UserIntegration:
    """Save or update a user's integration tokens."""
    integration = get_user_integration(db, user_id, integration_type)

    token_expires_at = None
    if expires_in:
        token_expires_at = _now_utc() + timedelta(seconds=expires_in)

    if integration:
        if access_token:
            integration.access_token_encrypted = encrypt_token(access_token)
        if refresh_token:
            integration.refresh_token_encrypted = encrypt_token(refresh_token)
        integration.token_expires_at = token_expires_at
        if account_email:
            integration.account_email = account_email
    else:
        integration = UserIntegration(
            user_id=user_id,
            integration_type=integration_type,
            access_token_encrypted=encrypt_token(access_token) if access_token else None,
            refresh_token_encrypted=encrypt_token(refresh_token)
            if refresh_token
            else None,
            token_expires_at=token_expires_at,
            account_email=account_email,
        )
        db.add(integration)

    db.commit()
    db.refresh(integration)
    return integration


# ============================================================================
# Microsoft token refresh
# ============================================================================


async def refresh_microsoft_token(
    refresh_token: str, *, transport: httpx.AsyncBaseTransport | None = None
) -> dict[str, Any]:
    """Exchange a refresh token. Raises TokenRefreshError on any failure."""
    try:
        async with httpx.AsyncClient(
            timeout=settings.GRAPH_TIMEOUT_SECONDS, transport=transport
        ) as client:
            response = await client.post(
                settings.MS_TOKEN_URL,
                data={
                    "client_id": settings.MS_CLIENT_ID,
                    "client_secret": settings.MS_CLIENT_SECRET,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                    "scope": settings.MS_SCOPES,
                },
            )
    except httpx.HTTPError as e:
        raise TokenRefreshError(f"Token endpoint unreachable: {type(e).__name__}") from e

    if response.status_code != 200:
        detail = ""
        try:
            detail = response.json().get("error_description") or response.json().get("error", "")
        except ValueError:
            detail = response.text[:200]
        logger.error("Microsoft token refresh failed status=%s", response.status_code)
        raise TokenRefreshError(
            f"Token refresh failed: {detail or response.status_code}",
            status_code=response.status_code,
        )

    data = response.json()
    if not data.get("access_token"):
        raise TokenRefreshError("Token refresh response missing access_token")
    return data


async def get_access_token(
    db: Session,
    user_id: str,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """
    Return a usable access token for the user's Microsoft account.

    The stored access token is reused while valid. Otherwise the refresh
    token is exchanged and the rotated refresh token persisted.
    """
    integration = get_user_integration(db, user_id)
    if not integration or not integration.refresh_token_encrypted:
        raise UserNotConnectedError(user_id)

    if (
        integration.access_token_encrypted
        and integration.token_expires_at
        and not _is_expired(integration.token_expires_at)
    ):
        return decrypt_token(integration.access_token_encrypted)

    refresh = decrypt_token(integration.refresh_token_encrypted)
    result = await refresh_microsoft_token(refresh, transport=transport)

    integration.access_token_encrypted = encrypt_token(result["access_token"])
    if result.get("refresh_token"):
        integration.refresh_token_encrypted = encrypt_token(result["refresh_token"])
    if result.get("expires_in"):
        integration.token_expires_at = _now_utc() + timedelta(seconds=int(result["expires_in"]))
    db.commit()

    return result["access_token"]
