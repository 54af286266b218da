"""Account administration: creation, status toggling, credential changes and login audit"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from epulsaku.config import settings
from epulsaku.domain.exceptions import PersistenceError
from epulsaku.domain.models import AccountResult, LoginActivity, StoredUser, UserRole
from epulsaku.infrastructure.database.repositories import (
    LoginActivityRepository,
    UserRepository,
    to_user,
)
from epulsaku.services.pin_guard import PIN_PATTERN, AlertSink, security_alert
from epulsaku.utils.date_utils import utc_now
from epulsaku.utils.security import hash_secret, verify_secret

logger = logging.getLogger(__name__)

_CREATABLE_ROLES = (UserRole.ADMIN, UserRole.STAF)


class UserService:
    def __init__(
        self,
        db: Session,
        alerts: Optional[AlertSink] = None,
        clock: Callable[[], datetime] = utc_now,
        login_retention_days: Optional[int] = None,
    ):
        self.db = db
        self.users = UserRepository(db)
        self.activity = LoginActivityRepository(db)
        self.alerts = alerts
        self.clock = clock
        self.login_retention_days = login_retention_days or settings.login_activity_retention_days

    def has_users(self) -> bool:
        return self.users.count() > 0

    def list_users(self) -> List[StoredUser]:
        return [to_user(r) for r in self.users.list_all()]

    def get_user(self, username: str) -> Optional[StoredUser]:
        record = self.users.get_by_username(username)
        return to_user(record) if record else None

    def create_user(
        self,
        username: str,
        password: str,
        pin: Optional[str] = None,
        email: Optional[str] = None,
        role: Optional[UserRole] = None,
        permissions: Optional[List[str]] = None,
        creator_id: Optional[str] = None,
        telegram_chat_id: Optional[str] = None,
        admin_password_confirmation: Optional[str] = None,
    ) -> AccountResult:
        """
        The very first account becomes super_admin. After that only a
        super_admin, re-entering their own password, may add admin/staf users.
        """
        if pin is not None and not PIN_PATTERN.match(pin):
            return AccountResult(success=False, message="PIN must be exactly 6 digits.")

        try:
            first_user = self.users.count() == 0
            if first_user:
                final_role = UserRole.SUPER_ADMIN
            else:
                creator = self.users.get_by_id(creator_id) if creator_id else None
                if creator is None or creator.role != UserRole.SUPER_ADMIN.value:
                    return AccountResult(success=False, message="Only a super_admin can create new users.")
                if role not in _CREATABLE_ROLES:
                    return AccountResult(
                        success=False,
                        message="A valid role ('admin' or 'staf') must be assigned by the super_admin.",
                    )
                if not admin_password_confirmation:
                    return AccountResult(
                        success=False, message="Your admin password is required to create a new user."
                    )
                if not creator.hashed_password:
                    return AccountResult(success=False, message="Creator account has no password set.")
                if not verify_secret(admin_password_confirmation, creator.hashed_password):
                    return AccountResult(
                        success=False, message="Incorrect admin password. User creation failed."
                    )
                final_role = UserRole(role)

            if self.users.get_by_username(username) is not None:
                return AccountResult(success=False, message="Username already exists.")

            record = self.users.add(
                {
                    "username": username.lower(),
                    "email": email.lower() if email else None,
                    "hashed_password": hash_secret(password),
                    "hashed_pin": hash_secret(pin) if pin else None,
                    "role": final_role.value,
                    "permissions": ["all_access"] if final_role is UserRole.SUPER_ADMIN else list(permissions or []),
                    "created_by": "system_signup" if first_user else creator_id,
                    "telegram_chat_id": telegram_chat_id,
                    "is_disabled": False,
                    "failed_pin_attempts": 0,
                }
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return AccountResult(success=False, message="Username already exists.")
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not create user {username}") from e

        logger.info(f"User {record.username} created with role {final_role.value}", extra={"username": record.username})
        return AccountResult(
            success=True,
            message=f"User {username} created successfully with role {final_role.value}.",
            user=to_user(record),
        )

    def authenticate(self, username: str, password: str) -> AccountResult:
        """Password check for login; disabled accounts are refused after the user lookup"""
        record = self.users.get_by_username(username)
        if record is None or not record.hashed_password:
            return AccountResult(success=False, message="Invalid username or password.")
        if record.is_disabled:
            return AccountResult(
                success=False,
                message="Your account has been disabled. Please contact an administrator.",
                user=to_user(record),
            )
        if not verify_secret(password, record.hashed_password):
            return AccountResult(success=False, message="Invalid username or password.")
        return AccountResult(success=True, message="Login successful.", user=to_user(record))

    def toggle_user_status(self, user_id: str, admin_id: str) -> AccountResult:
        """Flip is_disabled; re-enabling clears the PIN failure counter"""
        try:
            admin = self.users.get_by_id(admin_id)
            if admin is None or admin.role != UserRole.SUPER_ADMIN.value:
                return AccountResult(
                    success=False, message="Permission denied. Only a super_admin can change user status."
                )
            target = self.users.get_by_id(user_id)
            if target is None:
                return AccountResult(success=False, message="User not found.")
            if target.role == UserRole.SUPER_ADMIN.value:
                return AccountResult(success=False, message="Cannot disable the super_admin account.")

            disabled = not target.is_disabled
            patch = {"is_disabled": disabled}
            if not disabled:
                patch["failed_pin_attempts"] = 0
            self.users.update_fields(target.id, patch)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not change status of user {user_id}") from e

        if self.alerts is not None:
            self.alerts.dispatch(
                security_alert(
                    target.username,
                    target.id,
                    status=f"Account {'Disabled' if disabled else 'Enabled'}",
                    reason=f"Status changed by super_admin: {admin.username}",
                    moment=self.clock(),
                    ref_prefix="STATUS_CHG",
                )
            )
        logger.info(
            f"User {target.username} {'disabled' if disabled else 'enabled'} by {admin.username}",
            extra={"username": target.username},
        )
        return AccountResult(
            success=True,
            message=f"User '{target.username}' has been {'disabled' if disabled else 'enabled'}.",
        )

    def delete_user(self, user_id: str, admin_id: str) -> AccountResult:
        try:
            admin = self.users.get_by_id(admin_id)
            if admin is None or admin.role != UserRole.SUPER_ADMIN.value:
                return AccountResult(
                    success=False, message="Permission denied. Only a super_admin can delete users."
                )
            target = self.users.get_by_id(user_id)
            if target is None:
                return AccountResult(success=False, message="User to delete not found.")
            if target.role == UserRole.SUPER_ADMIN.value:
                return AccountResult(success=False, message="Cannot delete the super_admin account.")
            username = target.username
            self.users.delete(target.id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not delete user {user_id}") from e
        return AccountResult(success=True, message=f"User {username} deleted successfully.")

    def change_password(self, username: str, old_password: str, new_password: str) -> AccountResult:
        try:
            record = self.users.get_by_username(username)
            if record is None or not record.hashed_password:
                return AccountResult(success=False, message="User not found.")
            if not verify_secret(old_password, record.hashed_password):
                return AccountResult(success=False, message="Incorrect old password.")
            self.users.update_fields(record.id, {"hashed_password": hash_secret(new_password)})
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not change password for {username}") from e
        return AccountResult(success=True, message="Password changed successfully. Please log in again.")

    def change_pin(self, username: str, current_password: str, new_pin: str) -> AccountResult:
        """Set a new PIN after a password check; the PIN failure counter starts over"""
        if not PIN_PATTERN.match(new_pin or ""):
            return AccountResult(success=False, message="PIN must be exactly 6 digits.")
        try:
            record = self.users.get_by_username(username)
            if record is None or not record.hashed_password:
                return AccountResult(success=False, message="User not found.")
            if not verify_secret(current_password, record.hashed_password):
                return AccountResult(success=False, message="Incorrect account password.")
            self.users.update_fields(
                record.id, {"hashed_pin": hash_secret(new_pin), "failed_pin_attempts": 0}
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not change PIN for {username}") from e
        return AccountResult(success=True, message="PIN changed successfully.")

    def record_login_success(
        self,
        user: StoredUser,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> None:
        """Audit a successful login; entries older than the retention window are dropped first"""
        now = self.clock()
        try:
            pruned = self.activity.prune_before(now - timedelta(days=self.login_retention_days))
            self.activity.add(
                {
                    "user_id": user.id,
                    "username": user.username,
                    "login_timestamp": now,
                    "user_agent": user_agent or "Unknown UA",
                    "ip_address": ip_address or "Unknown IP",
                }
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to record login activity: {e}", extra={"username": user.username})
            return
        if pruned:
            logger.info(f"[DB Pruning] Deleted {pruned} login activity entries")

    def login_history(self, username: str, limit: int = 20) -> List[LoginActivity]:
        return [
            LoginActivity(
                id=r.id,
                user_id=r.user_id,
                username=r.username,
                login_timestamp=r.login_timestamp,
                user_agent=r.user_agent or "Unknown UA",
                ip_address=r.ip_address or "Unknown IP",
            )
            for r in self.activity.history(username, limit)
        ]

    def delete_login_activity(self, activity_id: str) -> AccountResult:
        try:
            deleted = self.activity.delete(activity_id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not delete login activity {activity_id}") from e
        if not deleted:
            return AccountResult(success=False, message="Activity record not found.")
        return AccountResult(success=True, message="Login activity record deleted.")


def telegram_chat_lookup(session_factory: sessionmaker) -> Callable[[str], Optional[str]]:
    """Username -> personal Telegram chat id, read with a short-lived session"""

    def lookup(username: str) -> Optional[str]:
        db = session_factory()
        try:
            record = UserRepository(db).get_by_username(username)
            return record.telegram_chat_id if record else None
        except SQLAlchemyError as e:
            logger.warning(f"Could not look up Telegram chat for {username}: {e}")
            return None
        finally:
            db.close()

    return lookup
