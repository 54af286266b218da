"""FastAPI application factory"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from starlette.responses import Response

from epulsaku.api.middleware import RequestIDMiddleware, MetricsMiddleware
from epulsaku.api.v1 import transactions, security, users, prices, providers, webhooks
from epulsaku.config import settings
from epulsaku.domain.pricing import PriceResolver
from epulsaku.infrastructure.clients.digiflazz import DigiflazzClient
from epulsaku.infrastructure.clients.telegram import TelegramClient
from epulsaku.infrastructure.clients.tokovoucher import TokoVoucherClient
from epulsaku.infrastructure.database.session import get_session_factory
from epulsaku.infrastructure.observability.logging import setup_logging
from epulsaku.services.balances import BalanceMonitor
from epulsaku.services.login_throttle import LoginThrottle
from epulsaku.services.notifications import NotificationDispatcher
from epulsaku.services.price_list import DigiflazzPriceList
from epulsaku.services.prices import CachedPriceOverrides
from epulsaku.services.providers import ProviderGateway
from epulsaku.services.purchases import RefIdGenerator
from epulsaku.services.reconciliation import ReconciliationSupervisor
from epulsaku.services.users import telegram_chat_lookup

# Setup structured logging
setup_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    supervisor: ReconciliationSupervisor = app.state.supervisor
    if app.state.resume_pending:
        try:
            resumed = supervisor.resume_pending()
            logger.info(f"Resumed reconciliation for {resumed} pending transactions")
        except SQLAlchemyError as e:
            logger.error(f"Could not resume pending transactions: {e}")
    yield
    await supervisor.stop_all()


def create_app(
    session_factory: Optional[sessionmaker] = None,
    gateway: Optional[ProviderGateway] = None,
    notifier: Optional[NotificationDispatcher] = None,
    resume_pending: bool = True,
) -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="ePulsaku Gateway",
        description="Digital product purchases, status reconciliation and operator alerts",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    session_factory = session_factory or get_session_factory()
    price_overrides = CachedPriceOverrides(session_factory)
    price_resolver = PriceResolver(price_overrides)
    gateway = gateway or ProviderGateway(DigiflazzClient(), TokoVoucherClient())
    notifier = notifier or NotificationDispatcher(
        TelegramClient(), user_chat_lookup=telegram_chat_lookup(session_factory)
    )

    app.state.session_factory = session_factory
    app.state.price_overrides = price_overrides
    app.state.price_resolver = price_resolver
    app.state.gateway = gateway
    app.state.notifier = notifier
    app.state.supervisor = ReconciliationSupervisor(session_factory, gateway, price_resolver, notifier)
    app.state.login_throttle = LoginThrottle()
    app.state.ref_ids = RefIdGenerator()
    app.state.price_list = DigiflazzPriceList(gateway.digiflazz)
    app.state.balance_monitor = BalanceMonitor(gateway.digiflazz, gateway.tokovoucher, notifier)
    app.state.resume_pending = resume_pending

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {
            "status": "ok",
            "service": settings.service_name,
            "watched_transactions": len(app.state.supervisor.watched),
        }

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(transactions.router, prefix="/v1", tags=["transactions"])
    app.include_router(security.router, prefix="/v1", tags=["security"])
    app.include_router(users.router, prefix="/v1", tags=["users"])
    app.include_router(prices.router, prefix="/v1", tags=["prices"])
    app.include_router(providers.router, prefix="/v1", tags=["providers"])
    app.include_router(webhooks.router, prefix="/v1", tags=["webhooks"])

    return app


app = create_app()
