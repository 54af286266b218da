"""Operator price overrides: cached reads and password-confirmed saves"""

import logging
from datetime import datetime
from typing import Callable, Dict, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from epulsaku.config import settings
from epulsaku.domain.models import OperationResult
from epulsaku.domain.pricing import sanitize_overrides
from epulsaku.infrastructure.cache import TimedCache
from epulsaku.infrastructure.database.repositories import PriceOverrideRepository, UserRepository
from epulsaku.utils.date_utils import utc_now
from epulsaku.utils.security import verify_secret

logger = logging.getLogger(__name__)


class CachedPriceOverrides:
    """
    Override source backed by the price_settings table. The full set is
    loaded into a TimedCache and refreshed once the TTL lapses. A failed load
    is not cached; lookups fall back to the default markup meanwhile.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        ttl_seconds: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.session_factory = session_factory
        ttl = settings.price_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        kwargs = {"clock": clock} if clock is not None else {}
        self.cache: TimedCache[Dict[str, int]] = TimedCache(self._load, ttl, **kwargs)

    def _load(self) -> Dict[str, int]:
        db = self.session_factory()
        try:
            return PriceOverrideRepository(db).load_all()
        finally:
            db.close()

    def all(self) -> Dict[str, int]:
        try:
            return dict(self.cache.get())
        except SQLAlchemyError as e:
            logger.error(f"Error fetching price settings from DB: {e}")
            return {}

    def get_override(self, namespaced_key: str) -> Optional[int]:
        price = self.all().get(namespaced_key)
        return price if price and price > 0 else None

    def invalidate(self) -> None:
        self.cache.invalidate()


def store_price_settings(
    db: Session,
    overrides: Mapping[str, object],
    admin_username: str,
    admin_password: str,
    cache: Optional[CachedPriceOverrides] = None,
    clock: Callable[[], datetime] = utc_now,
) -> OperationResult:
    """Replace the override set after re-checking the admin's password"""
    try:
        admin = UserRepository(db).get_by_username(admin_username)
        if admin is None or not admin.hashed_password:
            return OperationResult(success=False, message="Admin user not found or password not set.")
        if not verify_secret(admin_password, admin.hashed_password):
            return OperationResult(success=False, message="Incorrect admin password. Price settings not saved.")

        valid = sanitize_overrides(overrides)
        PriceOverrideRepository(db).replace_all(valid, admin_username, clock())
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error saving price settings to DB: {e}")
        return OperationResult(success=False, message=f"Failed to save price settings: {e}")

    if cache is not None:
        cache.invalidate()
    logger.info(
        f"Price settings saved by {admin_username} ({len(valid)} overrides)",
        extra={"username": admin_username},
    )
    return OperationResult(success=True, message="Price settings saved successfully.")
