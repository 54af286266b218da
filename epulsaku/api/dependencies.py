"""Dependency injection for FastAPI endpoints.

Process-wide collaborators (upstream clients, notifier, reconciliation
supervisor, caches) live on `app.state`; request-scoped services are built
per request around the `get_db` session.
"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from epulsaku.domain.pricing import PriceResolver
from epulsaku.infrastructure.database.session import get_db
from epulsaku.services.balances import BalanceMonitor
from epulsaku.services.ledger import TransactionLedger
from epulsaku.services.login_throttle import LoginThrottle
from epulsaku.services.notifications import NotificationDispatcher
from epulsaku.services.pin_guard import PinSecurityGuard
from epulsaku.services.price_list import DigiflazzPriceList
from epulsaku.services.prices import CachedPriceOverrides
from epulsaku.services.providers import ProviderGateway
from epulsaku.services.purchases import PurchaseService, RefIdGenerator
from epulsaku.services.reconciliation import ReconciliationSupervisor
from epulsaku.services.users import UserService


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "127.0.0.1"


def get_price_overrides(request: Request) -> CachedPriceOverrides:
    return request.app.state.price_overrides


def get_price_resolver(request: Request) -> PriceResolver:
    return request.app.state.price_resolver


def get_notifier(request: Request) -> NotificationDispatcher:
    return request.app.state.notifier


def get_gateway(request: Request) -> ProviderGateway:
    return request.app.state.gateway


def get_supervisor(request: Request) -> ReconciliationSupervisor:
    return request.app.state.supervisor


def get_login_throttle(request: Request) -> LoginThrottle:
    return request.app.state.login_throttle


def get_ref_ids(request: Request) -> RefIdGenerator:
    return request.app.state.ref_ids


def get_price_list(request: Request) -> DigiflazzPriceList:
    return request.app.state.price_list


def get_balance_monitor(request: Request) -> BalanceMonitor:
    return request.app.state.balance_monitor


def get_ledger(
    db: Session = Depends(get_db),
    price_resolver: PriceResolver = Depends(get_price_resolver),
) -> TransactionLedger:
    return TransactionLedger(db, price_resolver)


def get_pin_guard(
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> PinSecurityGuard:
    return PinSecurityGuard(db, alerts=notifier)


def get_user_service(
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> UserService:
    return UserService(db, alerts=notifier)


def get_purchase_service(
    guard: PinSecurityGuard = Depends(get_pin_guard),
    ledger: TransactionLedger = Depends(get_ledger),
    gateway: ProviderGateway = Depends(get_gateway),
    ref_ids: RefIdGenerator = Depends(get_ref_ids),
    notifier: NotificationDispatcher = Depends(get_notifier),
    supervisor: ReconciliationSupervisor = Depends(get_supervisor),
) -> PurchaseService:
    return PurchaseService(guard, ledger, gateway, ref_ids, notifier=notifier, supervisor=supervisor)
