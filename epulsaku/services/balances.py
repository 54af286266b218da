"""Provider balance sweep with low-balance alerts"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Tuple

from epulsaku.config import settings
from epulsaku.domain.exceptions import DomainException
from epulsaku.domain.models import BalanceCheckReport, NotificationEvent
from epulsaku.infrastructure.clients.digiflazz import DigiflazzClient
from epulsaku.infrastructure.clients.tokovoucher import TokoVoucherClient
from epulsaku.services.notifications import NotificationDispatcher, format_rupiah
from epulsaku.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

HALTED = "Halted"
COMPLETED = "Completed successfully"
COMPLETED_WITH_ERRORS = "Completed with errors"


def low_balance_event(provider_name: str, ref_prefix: str, balance: int, now: datetime) -> NotificationEvent:
    return NotificationEvent(
        ref_id=f"BALANCE_ALERT_{ref_prefix}_{int(now.timestamp() * 1000)}",
        product_name="Low Balance Alert",
        customer_no_display=f"Provider: {provider_name}",
        status="Warning",
        provider="System",
        timestamp=now,
        failure_reason=f"Saldo {provider_name} Anda kritis: Rp {format_rupiah(balance)}. Harap segera top up.",
        transacted_by="System Monitor",
    )


class BalanceMonitor:
    """Checks every configured provider and alerts when a balance is below the threshold"""

    def __init__(
        self,
        digiflazz: DigiflazzClient,
        tokovoucher: TokoVoucherClient,
        notifier: NotificationDispatcher,
        threshold: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.digiflazz = digiflazz
        self.tokovoucher = tokovoucher
        self.notifier = notifier
        self.threshold = settings.low_balance_threshold if threshold is None else threshold
        self.clock = clock

    def _providers(self) -> List[Tuple[str, str, bool, Callable[[], Awaitable[int]]]]:
        return [
            ("Digiflazz", "DIGI", self.digiflazz.configured, self.digiflazz.fetch_balance),
            ("TokoVoucher", "TOKO", self.tokovoucher.configured, self.tokovoucher.fetch_balance),
        ]

    async def check_and_notify(self) -> BalanceCheckReport:
        report = BalanceCheckReport(status=COMPLETED)
        if not self.notifier.configured:
            message = "Telegram notifications are not configured. Halting balance check."
            logger.warning(f"[Balance Check] {message}")
            report.status = HALTED
            report.errors.append(message)
            return report

        for name, ref_prefix, configured, fetch_balance in self._providers():
            if not configured:
                logger.info(f"[Balance Check] Skipping {name}: Not configured.")
                continue
            try:
                balance = await fetch_balance()
            except DomainException as e:
                message = f"Failed to check {name} balance: {e}"
                logger.error(f"[Balance Check] {message}")
                report.errors.append(message)
                continue

            report.checked_providers.append(name)
            logger.info(f"[Balance Check] {name} balance is {balance}", extra={"provider": name})
            if balance < self.threshold:
                await self.notifier.notify(low_balance_event(name, ref_prefix, balance, self.clock()))
                report.notifications_sent += 1

        if report.errors:
            report.status = COMPLETED_WITH_ERRORS
        return report
