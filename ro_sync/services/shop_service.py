"""Shop contact lookups and cache updates."""

import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from ro_sync.db.models import Shop
from ro_sync.jobs.utils import mask_email

logger = logging.getLogger(__name__)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def find_shop(db: Session, shop_name: str | None) -> Shop | None:
    """Exact case-insensitive name match first, then a substring match."""
    name = (shop_name or "").strip()
    if not name:
        return None

    exact = (
        db.query(Shop)
        .filter(func.lower(Shop.business_name) == name.lower())
        .order_by(Shop.id)
        .first()
    )
    if exact:
        return exact

    return (
        db.query(Shop)
        .filter(Shop.business_name.ilike(f"%{_escape_like(name)}%", escape="\\"))
        .order_by(Shop.id)
        .first()
    )


def get_shop_email(db: Session, shop_name: str | None) -> str | None:
    shop = find_shop(db, shop_name)
    if not shop or not shop.email or not shop.email.strip():
        return None
    return shop.email.strip()


def update_shop_email(db: Session, shop_name: str | None, email: str) -> bool:
    """
    Store the address a follow-up was actually sent to.

    Returns True when the cache changed. Unknown shops are added.
    """
    name = (shop_name or "").strip()
    email = email.strip()
    if not name or not email:
        return False

    shop = find_shop(db, name)
    if shop and (shop.email or "").strip().lower() == email.lower():
        return False

    if shop:
        shop.email = email
    else:
        db.add(Shop(business_name=name, email=email))
    db.commit()
    logger.info("Updated contact for shop=%s email=%s", name, mask_email(email))
    return True
