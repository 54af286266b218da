"""Transaction ledger: creation, lookup, status updates, deletion and retention pruning"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from epulsaku.config import settings
from epulsaku.domain.categorization import determine_category
from epulsaku.domain.exceptions import NotFoundError, PersistenceError
from epulsaku.domain.models import (
    NewTransaction,
    OperationResult,
    Transaction,
    TransactionStatus,
    TransactionUpdate,
)
from epulsaku.domain.pricing import PriceResolver
from epulsaku.infrastructure.database.repositories import TransactionRepository, to_transaction
from epulsaku.infrastructure.observability.metrics import record_transaction_created
from epulsaku.utils.date_utils import (
    calendar_fields,
    parse_timestamp,
    subtract_months,
    to_iso,
    utc_now,
)

logger = logging.getLogger(__name__)

# Fields a partial update may copy straight onto the record
_PLAIN_UPDATE_FIELDS = (
    "serial_number",
    "failure_reason",
    "provider_transaction_id",
    "cost_price",
    "product_name",
    "details",
    "product_category_from_provider",
    "product_brand_from_provider",
)


def _sort_key(tx: Transaction) -> float:
    parsed = parse_timestamp(tx.timestamp)
    return parsed.timestamp() if parsed else float("-inf")


class TransactionLedger:
    """Owns transaction records; expected failures come back as OperationResult"""

    def __init__(
        self,
        db: Session,
        price_resolver: PriceResolver,
        clock: Callable[[], datetime] = utc_now,
        tz_name: Optional[str] = None,
        retention_months: Optional[int] = None,
    ):
        self.db = db
        self.repo = TransactionRepository(db)
        self.price_resolver = price_resolver
        self.clock = clock
        self.tz_name = tz_name or settings.timezone
        self.retention_months = retention_months or settings.transaction_retention_months

    def create(self, new_tx: NewTransaction, transacted_by: str) -> OperationResult:
        """
        Persist a purchase.

        Category/icon come from the classifier, selling price from the price
        resolver, calendar fields from the submitted timestamp. Duplicate ids
        are not rejected.
        """
        category = determine_category(
            new_tx.product_category_from_provider,
            new_tx.product_brand_from_provider,
            new_tx.provider.value,
        )
        selling_price = self.price_resolver.resolve(
            new_tx.cost_price, new_tx.buyer_sku_code, new_tx.provider
        )
        moment = parse_timestamp(new_tx.timestamp)
        derived = calendar_fields(moment, self.tz_name) if moment else {}

        fields: Dict[str, Any] = {
            "ref_id": new_tx.id,
            "product_name": new_tx.product_name,
            "details": new_tx.details,
            "cost_price": new_tx.cost_price,
            "selling_price": selling_price,
            "status": new_tx.status.value,
            "timestamp": new_tx.timestamp,
            "serial_number": new_tx.serial_number,
            "failure_reason": new_tx.failure_reason,
            "buyer_sku_code": new_tx.buyer_sku_code,
            "original_customer_no": new_tx.original_customer_no,
            "product_category_from_provider": new_tx.product_category_from_provider,
            "product_brand_from_provider": new_tx.product_brand_from_provider,
            "provider": new_tx.provider.value,
            "source": new_tx.source or "web",
            "provider_transaction_id": new_tx.provider_transaction_id,
            "transacted_by": transacted_by,
            "category_key": category.category_key,
            "icon_name": category.icon_name,
            **derived,
        }

        try:
            self.repo.add(fields)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error adding transaction to DB: {e}", extra={"ref_id": new_tx.id})
            return OperationResult(success=False, message=f"Could not store transaction {new_tx.id}: {e}")

        record_transaction_created(new_tx.provider.value, new_tx.status.value)
        return OperationResult(success=True, transaction_id=new_tx.id)

    def get_all(self) -> List[Transaction]:
        """
        All records, newest first. Pruning runs first and may fail without
        affecting the read.

        Raises:
            PersistenceError: when the store cannot be read at all
        """
        self._prune_quietly()
        try:
            records = self.repo.list_all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not read transactions: {e}") from e
        return sorted((to_transaction(r) for r in records), key=_sort_key, reverse=True)

    def get_by_id(self, tx_id: str) -> Optional[Transaction]:
        """Exact match on the reference id"""
        try:
            record = self.repo.get_by_ref_id(tx_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not read transaction {tx_id}: {e}") from e
        return to_transaction(record) if record else None

    def require(self, tx_id: str) -> Transaction:
        """
        Like get_by_id, for callers that treat a missing record as an error.

        Raises:
            NotFoundError: no record carries `tx_id`
            PersistenceError: the store cannot be read
        """
        tx = self.get_by_id(tx_id)
        if tx is None:
            raise NotFoundError(f"Transaction {tx_id} not found")
        return tx

    def update(
        self,
        update: TransactionUpdate,
        expected_status: Optional[TransactionStatus] = None,
    ) -> OperationResult:
        """
        Merge supplied fields into the record located by id.

        - Pending -> Sukses/Gagal rewrites timestamp and calendar fields to now
        - a new positive cost price recomputes the selling price from the stored SKU/provider
        - new category/brand inputs recompute category_key/icon_name
        - expected_status turns the write into a compare-and-set on the current status
        """
        try:
            record = self.repo.get_by_ref_id(update.id)
            if record is None:
                return OperationResult(success=False, message=f"Transaction with id {update.id} not found for update.")

            patch: Dict[str, Any] = {
                name: getattr(update, name)
                for name in _PLAIN_UPDATE_FIELDS
                if getattr(update, name) is not None
            }

            if update.status is not None:
                patch["status"] = update.status.value
                if record.status == TransactionStatus.PENDING.value and update.status.is_terminal:
                    now = self.clock()
                    patch["timestamp"] = to_iso(now)
                    patch.update(calendar_fields(now, self.tz_name))

            if (
                update.cost_price is not None
                and update.cost_price > 0
                and update.cost_price != record.cost_price
            ):
                patch["selling_price"] = self.price_resolver.resolve(
                    update.cost_price, record.buyer_sku_code, record.provider
                )

            if (
                update.product_category_from_provider is not None
                or update.product_brand_from_provider is not None
            ):
                category = determine_category(
                    update.product_category_from_provider or record.product_category_from_provider,
                    update.product_brand_from_provider or record.product_brand_from_provider,
                    record.provider,
                )
                patch["category_key"] = category.category_key
                patch["icon_name"] = category.icon_name

            if not patch:
                return OperationResult(success=True, transaction_id=update.id)

            affected = self.repo.update_fields(
                update.id,
                patch,
                expected_status=expected_status.value if expected_status else None,
            )
            if affected == 0:
                self.db.rollback()
                return OperationResult(
                    success=False,
                    message=f"Transaction {update.id} is no longer {expected_status.value}; update skipped.",
                )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error updating transaction {update.id} in DB: {e}", extra={"ref_id": update.id})
            return OperationResult(success=False, message=f"Could not update transaction {update.id}: {e}")

        return OperationResult(success=True, transaction_id=update.id)

    def delete(self, tx_id: str) -> OperationResult:
        try:
            deleted = self.repo.delete_by_ref_id(tx_id)
            if deleted == 0:
                self.db.rollback()
                return OperationResult(success=False, message=f"Transaction with id {tx_id} not found for deletion.")
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error deleting transaction {tx_id} from DB: {e}", extra={"ref_id": tx_id})
            return OperationResult(success=False, message=f"Could not delete transaction {tx_id}: {e}")
        return OperationResult(success=True, transaction_id=tx_id)

    def retention_cutoff(self) -> datetime:
        return subtract_months(self.clock(), self.retention_months)

    def prune_older_than(self, cutoff: datetime) -> int:
        """Delete records whose timestamp predates cutoff; unparseable timestamps are kept"""
        stale = []
        for pk, raw in self.repo.list_timestamps():
            moment = parse_timestamp(raw)
            if moment is not None and moment < cutoff:
                stale.append(pk)
        deleted = self.repo.delete_by_pks(stale)
        self.db.commit()
        if deleted:
            logger.info(f"[DB Pruning] Deleted {deleted} transactions older than {to_iso(cutoff)}")
        return deleted

    def _prune_quietly(self) -> None:
        try:
            self.prune_older_than(self.retention_cutoff())
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"Transaction pruning failed, continuing with read: {e}")
