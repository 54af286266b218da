"""Data access layer for storefront entities.

Every mutation here is a single keyed UPDATE/DELETE statement so concurrent
writers never race through a read-whole-collection / write-whole-collection
window. Callers own the transaction boundary (commit/rollback).
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import func
from sqlalchemy.orm import Session
from epulsaku.infrastructure.database.models import (
    TransactionRecord,
    UserRecord,
    PriceOverrideRecord,
    LoginActivityRecord,
)
from epulsaku.domain.models import (
    Transaction,
    TransactionStatus,
    Provider,
    StoredUser,
    UserRole,
)


def to_transaction(record: TransactionRecord) -> Transaction:
    """Map ORM row to domain dataclass"""
    return Transaction(
        id=record.ref_id,
        product_name=record.product_name,
        details=record.details,
        cost_price=record.cost_price,
        selling_price=record.selling_price,
        status=TransactionStatus(record.status),
        timestamp=record.timestamp,
        buyer_sku_code=record.buyer_sku_code,
        original_customer_no=record.original_customer_no,
        product_category_from_provider=record.product_category_from_provider,
        product_brand_from_provider=record.product_brand_from_provider,
        provider=Provider(record.provider),
        category_key=record.category_key,
        icon_name=record.icon_name,
        source=record.source,
        serial_number=record.serial_number,
        failure_reason=record.failure_reason,
        provider_transaction_id=record.provider_transaction_id,
        transacted_by=record.transacted_by,
        transaction_year=record.transaction_year,
        transaction_month=record.transaction_month,
        transaction_day_of_month=record.transaction_day_of_month,
        transaction_day_of_week=record.transaction_day_of_week,
        transaction_hour=record.transaction_hour,
    )


def to_user(record: UserRecord) -> StoredUser:
    return StoredUser(
        id=record.id,
        username=record.username,
        role=UserRole(record.role),
        hashed_password=record.hashed_password,
        hashed_pin=record.hashed_pin,
        email=record.email,
        permissions=list(record.permissions or []),
        created_by=record.created_by,
        telegram_chat_id=record.telegram_chat_id,
        is_disabled=bool(record.is_disabled),
        failed_pin_attempts=record.failed_pin_attempts or 0,
    )


class TransactionRepository:
    """Repository for the transaction log"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, fields: Dict[str, Any]) -> TransactionRecord:
        """Insert a row; duplicate ref ids are allowed"""
        record = TransactionRecord(**fields)
        self.db.add(record)
        self.db.flush()
        return record

    def list_all(self) -> List[TransactionRecord]:
        return self.db.query(TransactionRecord).all()

    def get_by_ref_id(self, ref_id: str) -> Optional[TransactionRecord]:
        return (
            self.db.query(TransactionRecord)
            .filter(TransactionRecord.ref_id == ref_id)
            .first()
        )

    def update_fields(
        self,
        ref_id: str,
        patch: Dict[str, Any],
        expected_status: Optional[str] = None,
    ) -> int:
        """
        Keyed UPDATE. With `expected_status` the write only lands if the stored
        status still matches (compare-and-set). Returns affected row count.
        """
        query = self.db.query(TransactionRecord).filter(TransactionRecord.ref_id == ref_id)
        if expected_status is not None:
            query = query.filter(TransactionRecord.status == expected_status)
        return query.update(patch, synchronize_session=False)

    def delete_by_ref_id(self, ref_id: str) -> int:
        """Delete the first row carrying `ref_id`"""
        record = self.get_by_ref_id(ref_id)
        if record is None:
            return 0
        return (
            self.db.query(TransactionRecord)
            .filter(TransactionRecord.pk == record.pk)
            .delete(synchronize_session=False)
        )

    def list_ref_ids_with_status(self, status: str) -> List[str]:
        return [ref_id for (ref_id,) in self.db.query(TransactionRecord.ref_id).filter(TransactionRecord.status == status).all()]

    def list_timestamps(self) -> List[Tuple[str, str]]:
        """(pk, timestamp) pairs used by retention pruning"""
        return [(pk, ts) for pk, ts in self.db.query(TransactionRecord.pk, TransactionRecord.timestamp).all()]

    def delete_by_pks(self, pks: List[str]) -> int:
        if not pks:
            return 0
        return (
            self.db.query(TransactionRecord)
            .filter(TransactionRecord.pk.in_(pks))
            .delete(synchronize_session=False)
        )


class UserRepository:
    """Repository for user accounts and PIN lockout counters"""

    def __init__(self, db: Session):
        self.db = db

    def count(self) -> int:
        return self.db.query(func.count(UserRecord.id)).scalar() or 0

    def add(self, fields: Dict[str, Any]) -> UserRecord:
        record = UserRecord(**fields)
        self.db.add(record)
        self.db.flush()
        return record

    def list_all(self) -> List[UserRecord]:
        return self.db.query(UserRecord).order_by(UserRecord.username).all()

    def get_by_id(self, user_id: str) -> Optional[UserRecord]:
        return self.db.query(UserRecord).filter(UserRecord.id == user_id).first()

    def get_by_username(self, username: str) -> Optional[UserRecord]:
        """Case-insensitive lookup"""
        return (
            self.db.query(UserRecord)
            .filter(func.lower(UserRecord.username) == username.lower())
            .first()
        )

    def update_fields(self, user_id: str, patch: Dict[str, Any]) -> int:
        return (
            self.db.query(UserRecord)
            .filter(UserRecord.id == user_id)
            .update(patch, synchronize_session=False)
        )

    def increment_failed_pin_attempts(self, user_id: str) -> int:
        """
        Atomic `failed_pin_attempts + 1` evaluated by the database, then read
        back inside the same transaction. The UPDATE's row lock serializes
        concurrent failures so none is under-counted.
        """
        self.db.query(UserRecord).filter(UserRecord.id == user_id).update(
            {UserRecord.failed_pin_attempts: UserRecord.failed_pin_attempts + 1},
            synchronize_session=False,
        )
        self.db.flush()
        return (
            self.db.query(UserRecord.failed_pin_attempts)
            .filter(UserRecord.id == user_id)
            .scalar()
            or 0
        )

    def reset_failed_pin_attempts(self, user_id: str) -> int:
        return (
            self.db.query(UserRecord)
            .filter(UserRecord.id == user_id, UserRecord.failed_pin_attempts > 0)
            .update({UserRecord.failed_pin_attempts: 0}, synchronize_session=False)
        )

    def delete(self, user_id: str) -> int:
        return (
            self.db.query(UserRecord)
            .filter(UserRecord.id == user_id)
            .delete(synchronize_session=False)
        )


class PriceOverrideRepository:
    """Repository for operator price overrides"""

    def __init__(self, db: Session):
        self.db = db

    def load_all(self) -> Dict[str, int]:
        return {row.key: int(row.price) for row in self.db.query(PriceOverrideRecord).all()}

    def get(self, key: str) -> Optional[int]:
        row = self.db.query(PriceOverrideRecord).filter(PriceOverrideRecord.key == key).first()
        return int(row.price) if row else None

    def replace_all(self, overrides: Dict[str, int], updated_by: str, updated_at: datetime) -> None:
        """Swap the whole override set inside the caller's transaction"""
        self.db.query(PriceOverrideRecord).delete(synchronize_session=False)
        for key, price in overrides.items():
            self.db.add(
                PriceOverrideRecord(
                    key=key,
                    price=price,
                    last_updated_by=updated_by,
                    last_updated_at=updated_at,
                )
            )
        self.db.flush()


class LoginActivityRepository:
    """Repository for successful-login audit entries"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, fields: Dict[str, Any]) -> LoginActivityRecord:
        record = LoginActivityRecord(**fields)
        self.db.add(record)
        self.db.flush()
        return record

    def prune_before(self, cutoff: datetime) -> int:
        return (
            self.db.query(LoginActivityRecord)
            .filter(LoginActivityRecord.login_timestamp < cutoff)
            .delete(synchronize_session=False)
        )

    def history(self, username: str, limit: int = 20) -> List[LoginActivityRecord]:
        return (
            self.db.query(LoginActivityRecord)
            .filter(func.lower(LoginActivityRecord.username) == username.lower())
            .order_by(LoginActivityRecord.login_timestamp.desc())
            .limit(limit)
            .all()
        )

    def delete(self, activity_id: str) -> int:
        return (
            self.db.query(LoginActivityRecord)
            .filter(LoginActivityRecord.id == activity_id)
            .delete(synchronize_session=False)
        )
