"""Purchase orchestration: PIN check, provider order, ledger entry, alert and pending watch"""

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from epulsaku.config import settings
from epulsaku.domain.exceptions import UpstreamApiError, ValidationError
from epulsaku.domain.models import (
    NewTransaction,
    Provider,
    ProviderResult,
    Transaction,
    TransactionStatus,
)
from epulsaku.services.ledger import TransactionLedger
from epulsaku.services.notifications import NotificationDispatcher
from epulsaku.services.pin_guard import PinSecurityGuard
from epulsaku.services.providers import PROVIDER_DISPLAY_NAMES, REF_ID_PREFIXES, ProviderGateway
from epulsaku.services.reconciliation import ReconciliationSupervisor, build_status_event
from epulsaku.utils.date_utils import generate_ref_id, to_iso, utc_now

logger = logging.getLogger(__name__)


class RefIdGenerator:
    """
    Issues `<prefix>-YYYYMMDDHHMMSS-NNN-<worker>`; the counter restarts every
    local day. The counter is per process, so each instance carries a random
    worker tag that keeps ids from parallel workers apart.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utc_now,
        tz_name: Optional[str] = None,
        worker_tag: Optional[str] = None,
    ):
        self.clock = clock
        self.tz_name = tz_name or settings.timezone
        self.worker_tag = secrets.token_hex(3) if worker_tag is None else worker_tag
        self._day: Optional[date] = None
        self._counter = 0
        self._lock = threading.Lock()

    def next(self, provider: Provider) -> str:
        with self._lock:
            moment = self.clock()
            day = moment.astimezone(ZoneInfo(self.tz_name)).date()
            self._counter = self._counter + 1 if day == self._day else 1
            self._day = day
            ref_id = f"{REF_ID_PREFIXES[provider]}-{generate_ref_id(moment, self._counter, self.tz_name)}"
            return f"{ref_id}-{self.worker_tag}" if self.worker_tag else ref_id


@dataclass
class PurchaseRequest:
    username: str
    pin: str
    provider: Provider
    product_code: str
    product_name: str
    customer_no: str
    cost_price: int
    category: str
    brand: str
    server_id: Optional[str] = None
    source: str = "web"


@dataclass
class PurchaseOutcome:
    success: bool
    message: str
    transaction: Optional[Transaction] = None
    account_disabled: bool = False
    attempts_remaining: Optional[int] = None


class PurchaseService:
    def __init__(
        self,
        guard: PinSecurityGuard,
        ledger: TransactionLedger,
        gateway: ProviderGateway,
        ref_ids: RefIdGenerator,
        notifier: Optional[NotificationDispatcher] = None,
        supervisor: Optional[ReconciliationSupervisor] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.guard = guard
        self.ledger = ledger
        self.gateway = gateway
        self.ref_ids = ref_ids
        self.notifier = notifier
        self.supervisor = supervisor
        self.clock = clock

    async def purchase(self, request: PurchaseRequest) -> PurchaseOutcome:
        """
        Nothing reaches the provider unless the PIN verifies. A transport
        failure during the order leaves the outcome unknown, so the record is
        stored as Pending and handed to reconciliation.
        """
        pin_check = self.guard.verify(request.username, request.pin)
        if not pin_check.is_valid:
            return PurchaseOutcome(
                success=False,
                message=pin_check.message,
                account_disabled=pin_check.account_disabled,
                attempts_remaining=pin_check.attempts_remaining,
            )

        ref_id = self.ref_ids.next(request.provider)
        try:
            result = await self.gateway.purchase(
                request.provider,
                ref_id,
                request.product_code,
                request.customer_no,
                request.server_id,
            )
        except ValidationError as e:
            return PurchaseOutcome(success=False, message=str(e))
        except UpstreamApiError as e:
            logger.warning(
                f"Order {ref_id} outcome unknown, recording as Pending: {e}",
                extra={"ref_id": ref_id, "provider": request.provider.value},
            )
            result = ProviderResult(status=TransactionStatus.PENDING, message=str(e))

        details = (
            f"{request.customer_no} (Server: {request.server_id})" if request.server_id else request.customer_no
        )
        original_customer_no = (
            f"{request.customer_no}|{request.server_id}" if request.server_id else request.customer_no
        )
        failure_reason = result.message if result.status is TransactionStatus.GAGAL else None

        created = self.ledger.create(
            NewTransaction(
                id=ref_id,
                product_name=request.product_name,
                details=details,
                cost_price=result.cost or request.cost_price,
                status=result.status,
                timestamp=to_iso(self.clock()),
                buyer_sku_code=request.product_code,
                original_customer_no=original_customer_no,
                product_category_from_provider=request.category,
                product_brand_from_provider=request.brand,
                provider=request.provider,
                source=request.source,
                serial_number=result.serial_number if result.status is TransactionStatus.SUKSES else None,
                failure_reason=failure_reason,
                provider_transaction_id=result.provider_tx_id,
            ),
            transacted_by=request.username,
        )
        if not created.success:
            return PurchaseOutcome(success=False, message=created.message or "Could not store transaction.")

        tx = self.ledger.get_by_id(ref_id)
        if self.notifier is not None and tx is not None:
            await self.notifier.notify(build_status_event(tx, result, additional_info=None))

        if result.status is TransactionStatus.PENDING and self.supervisor is not None:
            self.supervisor.watch(ref_id)

        provider_name = PROVIDER_DISPLAY_NAMES[request.provider]
        return PurchaseOutcome(
            success=result.status is not TransactionStatus.GAGAL,
            message=result.message or f"Order for {request.product_name} is {result.status.value} at {provider_name}.",
            transaction=tx,
        )
