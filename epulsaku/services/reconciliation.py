"""Status reconciliation for transactions stuck in Pending.

Each watched transaction gets its own periodic asyncio task. Ticks for the
same id are single-flight through a per-id lock, and the ledger write is a
compare-and-set on `Pending`, so a terminal status is never overwritten.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import AsyncIterator, Callable, Dict, Optional

from sqlalchemy.orm import Session, sessionmaker

from epulsaku.config import settings
from epulsaku.domain.exceptions import PersistenceError, UpstreamApiError, ValidationError
from epulsaku.domain.models import (
    NotificationEvent,
    OperationResult,
    Provider,
    ProviderResult,
    Transaction,
    TransactionStatus,
    TransactionUpdate,
)
from epulsaku.domain.pricing import PriceResolver
from epulsaku.infrastructure.database.repositories import TransactionRepository
from epulsaku.infrastructure.observability.logging import log_status_change
from epulsaku.infrastructure.observability.metrics import reconcile_tick_counter, record_status_transition
from epulsaku.services.ledger import TransactionLedger
from epulsaku.services.notifications import NotificationDispatcher
from epulsaku.services.providers import PROVIDER_DISPLAY_NAMES, ProviderGateway
from epulsaku.utils.date_utils import parse_timestamp, utc_now

logger = logging.getLogger(__name__)

AUTO_UPDATE = "Auto Update"
WEBHOOK_UPDATE = "Webhook Update"
MANUAL_UPDATE = "Manual Check"


class TickOutcome(str, Enum):
    RESOLVED = "resolved"
    STILL_PENDING = "still_pending"
    UPSTREAM_ERROR = "upstream_error"
    STOPPED = "stopped"


@dataclass
class _LockEntry:
    """A per-id lock and the number of coroutines holding or awaiting it"""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


def build_status_update(tx: Transaction, result: ProviderResult) -> TransactionUpdate:
    """Carry serial number, failure reason, provider trx id and corrected cost into a ledger update"""
    failure_reason = None
    if result.status is TransactionStatus.GAGAL:
        failure_reason = result.message or (
            result.serial_number if tx.provider is Provider.TOKOVOUCHER else None
        )
    return TransactionUpdate(
        id=tx.id,
        status=result.status,
        serial_number=result.serial_number if result.status is TransactionStatus.SUKSES else None,
        failure_reason=failure_reason,
        provider_transaction_id=result.provider_tx_id,
        cost_price=result.cost,
    )


def build_status_event(tx: Transaction, result: ProviderResult, additional_info: Optional[str]) -> NotificationEvent:
    cost = result.cost if result.cost is not None else tx.cost_price
    return NotificationEvent(
        ref_id=tx.id,
        product_name=tx.product_name,
        customer_no_display=tx.details,
        status=result.status.value,
        provider=PROVIDER_DISPLAY_NAMES.get(tx.provider, str(tx.provider)),
        timestamp=parse_timestamp(tx.timestamp) or utc_now(),
        cost_price=cost,
        selling_price=tx.selling_price,
        profit=tx.selling_price - cost if result.status is TransactionStatus.SUKSES else None,
        sn=tx.serial_number if result.status is TransactionStatus.SUKSES else None,
        failure_reason=tx.failure_reason if result.status is TransactionStatus.GAGAL else None,
        additional_info=additional_info,
        trx_id=result.provider_tx_id or tx.provider_transaction_id,
        transacted_by=tx.transacted_by,
    )


async def apply_provider_result(
    ledger: TransactionLedger,
    current: Transaction,
    result: ProviderResult,
    notifier: Optional[NotificationDispatcher],
    additional_info: str,
    source: str,
) -> OperationResult:
    """
    Write a terminal provider result through the ledger, only if the record
    is still Pending, then announce it.
    """
    outcome = ledger.update(build_status_update(current, result), expected_status=TransactionStatus.PENDING)
    if not outcome.success:
        return outcome

    fresh = ledger.get_by_id(current.id) or current
    record_status_transition(current.provider.value, result.status.value, source)
    log_status_change(
        current.id,
        current.provider.value,
        current.status.value,
        result.status.value,
        source,
        current.transacted_by,
    )
    if notifier is not None:
        await notifier.notify(build_status_event(fresh, result, additional_info))
    return outcome


class ReconciliationSupervisor:
    """Supervised pool of per-transaction polling tasks"""

    def __init__(
        self,
        session_factory: sessionmaker,
        gateway: ProviderGateway,
        price_resolver: PriceResolver,
        notifier: Optional[NotificationDispatcher] = None,
        interval_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.price_resolver = price_resolver
        self.notifier = notifier
        self.interval_seconds = interval_seconds or settings.reconcile_interval_seconds
        self.clock = clock
        self._tasks: Dict[str, asyncio.Task] = {}
        self._locks: Dict[str, _LockEntry] = {}

    @property
    def watched(self) -> set[str]:
        return set(self._tasks)

    @property
    def locked_ids(self) -> set[str]:
        """Ids with a tick or pushed result in flight or queued"""
        return set(self._locks)

    def watch(self, tx_id: str) -> bool:
        """Start polling `tx_id`; no-op if it is already watched. Must run inside the event loop."""
        task = self._tasks.get(tx_id)
        if task is not None and not task.done():
            return False
        self._tasks[tx_id] = asyncio.get_running_loop().create_task(
            self._run(tx_id), name=f"reconcile:{tx_id}"
        )
        logger.info(f"Watching pending transaction {tx_id}", extra={"ref_id": tx_id})
        return True

    def unwatch(self, tx_id: str) -> bool:
        task = self._tasks.pop(tx_id, None)
        if task is None:
            return False
        task.cancel()
        return True

    def resume_pending(self) -> int:
        """Watch every record still Pending in the store, e.g. after a restart"""
        db: Session = self.session_factory()
        try:
            pending = TransactionRepository(db).list_ref_ids_with_status(TransactionStatus.PENDING.value)
        finally:
            db.close()
        return sum(1 for tx_id in dict.fromkeys(pending) if self.watch(tx_id))

    async def stop_all(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, tx_id: str) -> None:
        try:
            while True:
                await asyncio.sleep(self.interval_seconds)
                outcome = await self.reconcile_once(tx_id)
                if outcome in (TickOutcome.RESOLVED, TickOutcome.STOPPED):
                    break
        finally:
            if self._tasks.get(tx_id) is asyncio.current_task():
                self._tasks.pop(tx_id, None)

    async def reconcile_once(
        self,
        tx_id: str,
        additional_info: str = AUTO_UPDATE,
        source: str = "auto_update",
    ) -> TickOutcome:
        """One polling tick; never raises. Manual rechecks reuse it with their own tag."""
        async with self._lock_for(tx_id):
            try:
                outcome = await self._tick(tx_id, additional_info, source)
            except PersistenceError as e:
                logger.error(f"Auto-check for {tx_id} could not reach the store: {e}", extra={"ref_id": tx_id})
                outcome = TickOutcome.UPSTREAM_ERROR
            except Exception as e:
                logger.exception(f"Error auto-checking status for transaction {tx_id}: {e}")
                outcome = TickOutcome.UPSTREAM_ERROR
        reconcile_tick_counter.labels(outcome=outcome.value).inc()
        return outcome

    async def apply_pushed_result(
        self,
        tx_id: str,
        result: ProviderResult,
        additional_info: str = WEBHOOK_UPDATE,
        source: str = "webhook",
    ) -> Optional[OperationResult]:
        """
        Apply a status the provider pushed to us. Serialized with the polling
        ticks of the same id. Returns None when the ref id is unknown.

        Raises:
            PersistenceError: the store cannot be read
        """
        async with self._lock_for(tx_id):
            db: Session = self.session_factory()
            try:
                ledger = TransactionLedger(db, self.price_resolver, clock=self.clock)
                current = ledger.get_by_id(tx_id)
                if current is None:
                    return None
                if result.status is TransactionStatus.PENDING:
                    return OperationResult(success=True, message="Transaction still pending.", transaction_id=tx_id)
                if current.status is not TransactionStatus.PENDING:
                    return OperationResult(
                        success=True,
                        message=f"Transaction already {current.status.value}; update ignored.",
                        transaction_id=tx_id,
                    )
                return await apply_provider_result(ledger, current, result, self.notifier, additional_info, source)
            finally:
                db.close()

    @asynccontextmanager
    async def _lock_for(self, tx_id: str) -> AsyncIterator[None]:
        """Hold the lock for `tx_id`; the entry is dropped once nobody holds or awaits it"""
        entry = self._locks.get(tx_id)
        if entry is None:
            entry = self._locks[tx_id] = _LockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(tx_id) is entry:
                del self._locks[tx_id]

    async def _tick(self, tx_id: str, additional_info: str, source: str) -> TickOutcome:
        db: Session = self.session_factory()
        try:
            ledger = TransactionLedger(db, self.price_resolver, clock=self.clock)

            current = ledger.get_by_id(tx_id)
            if current is None or current.status is not TransactionStatus.PENDING:
                logger.info(f"Auto-check for {tx_id}: transaction no longer pending, halting", extra={"ref_id": tx_id})
                return TickOutcome.STOPPED

            try:
                result = await self.gateway.query_status(current)
            except UpstreamApiError as e:
                logger.warning(f"Status query for {tx_id} failed, retrying next tick: {e}", extra={"ref_id": tx_id})
                return TickOutcome.UPSTREAM_ERROR
            except ValidationError as e:
                logger.warning(f"Status query for {tx_id} skipped: {e}", extra={"ref_id": tx_id})
                return TickOutcome.UPSTREAM_ERROR

            if result.status is TransactionStatus.PENDING:
                return TickOutcome.STILL_PENDING

            outcome = await apply_provider_result(ledger, current, result, self.notifier, additional_info, source)
            if not outcome.success:
                # a failed write leaves the record Pending; only a lost compare-and-set ends the watch
                latest = ledger.get_by_id(tx_id)
                if latest is not None and latest.status is TransactionStatus.PENDING:
                    logger.warning(
                        f"Auto-check for {tx_id}: {outcome.message}; retrying next tick",
                        extra={"ref_id": tx_id},
                    )
                    return TickOutcome.UPSTREAM_ERROR
                logger.info(f"Auto-check for {tx_id}: {outcome.message}", extra={"ref_id": tx_id})
                return TickOutcome.STOPPED
            return TickOutcome.RESOLVED
        finally:
            db.close()
