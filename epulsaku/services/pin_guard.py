"""Transaction PIN verification with consecutive-failure lockout"""

import logging
import re
from datetime import datetime
from typing import Callable, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from epulsaku.config import settings
from epulsaku.domain.exceptions import PersistenceError
from epulsaku.domain.models import NotificationEvent, PinVerification, UserRole
from epulsaku.infrastructure.database.repositories import UserRepository
from epulsaku.infrastructure.observability.metrics import account_lockout_counter, pin_failure_counter
from epulsaku.utils.date_utils import utc_now
from epulsaku.utils.security import verify_secret

logger = logging.getLogger(__name__)

PIN_PATTERN = re.compile(r"^\d{6}$")


class AlertSink(Protocol):
    def dispatch(self, event: NotificationEvent) -> object:
        ...


def security_alert(username: str, user_id: str, status: str, reason: str, moment: datetime, ref_prefix: str) -> NotificationEvent:
    """System-provider event rendered with the security alert layout"""
    return NotificationEvent(
        ref_id=f"{ref_prefix}_{user_id}",
        product_name="Account Security Alert",
        customer_no_display=f"User: {username}",
        status=status,
        provider="System",
        timestamp=moment,
        failure_reason=reason,
        transacted_by=username,
    )


class PinSecurityGuard:
    """
    Per-user state machine: Active(attempts 0..threshold-1) -> Locked.

    super_admin accounts never lock and their counter never moves.
    """

    def __init__(
        self,
        db: Session,
        alerts: Optional[AlertSink] = None,
        max_attempts: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.users = UserRepository(db)
        self.alerts = alerts
        self.max_attempts = max_attempts or settings.pin_max_attempts
        self.clock = clock

    def verify(self, username: str, pin: str) -> PinVerification:
        """
        Check `pin` for `username`.

        Raises:
            PersistenceError: the user store is unreachable
        """
        if not PIN_PATTERN.match(pin or ""):
            return PinVerification(is_valid=False, message="PIN must be exactly 6 digits.")

        try:
            user = self.users.get_by_username(username)
            if user is None:
                return PinVerification(is_valid=False, message="User not found.")
            if user.is_disabled:
                return PinVerification(
                    is_valid=False,
                    message="Your account is disabled. Please contact an administrator.",
                )
            if not user.hashed_pin:
                return PinVerification(is_valid=False, message="User does not have a PIN configured.")

            if verify_secret(pin, user.hashed_pin):
                if (user.failed_pin_attempts or 0) > 0:
                    self.users.reset_failed_pin_attempts(user.id)
                    self.db.commit()
                return PinVerification(is_valid=True, message="PIN verified successfully.")

            pin_failure_counter.labels(role=user.role).inc()

            if user.role == UserRole.SUPER_ADMIN.value:
                return PinVerification(is_valid=False, message="Invalid PIN.")

            new_count = self.users.increment_failed_pin_attempts(user.id)
            if new_count >= self.max_attempts:
                self.users.update_fields(user.id, {"is_disabled": True})
                self.db.commit()
                self._on_lockout(user.username, user.id)
                return PinVerification(
                    is_valid=False,
                    message=(
                        "Too many failed PIN attempts. Your account has been disabled for security. "
                        "Please contact a super administrator."
                    ),
                    account_disabled=True,
                    attempts_remaining=0,
                )

            self.db.commit()
            remaining = self.max_attempts - new_count
            return PinVerification(
                is_valid=False,
                message=f"Invalid PIN. You have {remaining} attempt(s) remaining before your account is locked.",
                attempts_remaining=remaining,
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"PIN verification failed on store access: {e}", extra={"username": username})
            raise PersistenceError(f"Could not verify PIN for {username}") from e

    def _on_lockout(self, username: str, user_id: str) -> None:
        account_lockout_counter.inc()
        logger.warning(
            f"Account for user {username} disabled after too many failed PIN attempts",
            extra={"username": username, "step": "pin_lockout"},
        )
        if self.alerts is not None:
            self.alerts.dispatch(
                security_alert(
                    username,
                    user_id,
                    status="Account Disabled",
                    reason="Too many failed PIN attempts",
                    moment=self.clock(),
                    ref_prefix="SECURITY_ALERT",
                )
            )
