"""Pytest fixtures for testing"""

import os

# Must be set before epulsaku.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "")
os.environ.setdefault("TELEGRAM_CHAT_IDS", "")

from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Dict, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from epulsaku.api.main import create_app
from epulsaku.domain.models import (
    NewTransaction,
    NotificationEvent,
    Provider,
    ProviderResult,
    Transaction,
    TransactionStatus,
    UserRole,
)
from epulsaku.domain.pricing import PriceResolver
from epulsaku.infrastructure.clients.digiflazz import DigiflazzClient
from epulsaku.infrastructure.clients.tokovoucher import TokoVoucherClient
from epulsaku.infrastructure.database.models import Base
from epulsaku.infrastructure.database.repositories import UserRepository
from epulsaku.infrastructure.database.session import get_db
from epulsaku.services.ledger import TransactionLedger
from epulsaku.utils.date_utils import to_iso
from epulsaku.utils.security import hash_secret

NOW = datetime(2024, 5, 14, 6, 30, 15, tzinfo=timezone.utc)


class FixedClock:
    """Injectable clock that tests move by hand"""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class StaticOverrides:
    """Dict-backed price override source"""

    def __init__(self, overrides: Optional[Dict[str, int]] = None):
        self.overrides = dict(overrides or {})

    def get_override(self, namespaced_key: str) -> Optional[int]:
        return self.overrides.get(namespaced_key)


class RecordingNotifier:
    """Stands in for NotificationDispatcher and keeps every event"""

    def __init__(self):
        self.configured = True
        self.notified: List[NotificationEvent] = []
        self.dispatched: List[NotificationEvent] = []

    async def notify(self, event: NotificationEvent) -> int:
        self.notified.append(event)
        return 1

    def dispatch(self, event: NotificationEvent) -> None:
        self.dispatched.append(event)


class FakeGateway:
    """
    Scripted provider: `purchases` and `statuses` are FIFO queues of
    ProviderResult or exceptions, per ref id for status queries.
    """

    def __init__(self):
        self.digiflazz = DigiflazzClient(username="user", api_key="key", base_url="https://digiflazz.test/v1")
        self.tokovoucher = TokoVoucherClient(member_code="M1", secret="S1", base_url="https://tokovoucher.test")
        self.purchases: deque = deque()
        self.statuses: Dict[str, deque] = defaultdict(deque)
        self.purchase_calls: List[tuple] = []
        self.status_calls: List[str] = []

    def queue_status(self, ref_id: str, *results) -> None:
        self.statuses[ref_id].extend(results)

    @staticmethod
    def _next(queue: deque):
        item = queue.popleft() if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def purchase(self, provider, ref_id, product_code, customer_no, server_id=None) -> ProviderResult:
        self.purchase_calls.append((provider, ref_id, product_code, customer_no, server_id))
        return self._next(self.purchases)

    async def query_status(self, tx: Transaction) -> ProviderResult:
        self.status_calls.append(tx.id)
        return self._next(self.statuses[tx.id])


def make_new_transaction(**overrides) -> NewTransaction:
    fields = dict(
        id="DF-20240514143015-001",
        product_name="Telkomsel 15.000",
        details="081234567890",
        cost_price=15000,
        status=TransactionStatus.PENDING,
        timestamp=to_iso(NOW),
        buyer_sku_code="TSEL15",
        original_customer_no="081234567890",
        product_category_from_provider="Pulsa",
        product_brand_from_provider="TELKOMSEL",
        provider=Provider.DIGIFLAZZ,
    )
    fields.update(overrides)
    return NewTransaction(**fields)


@pytest.fixture
def engine():
    """In-memory database shared by every session of a test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def overrides() -> StaticOverrides:
    return StaticOverrides()


@pytest.fixture
def price_resolver(overrides: StaticOverrides) -> PriceResolver:
    return PriceResolver(overrides)


@pytest.fixture
def ledger(db: Session, price_resolver: PriceResolver, clock: FixedClock) -> TransactionLedger:
    return TransactionLedger(db, price_resolver, clock=clock, tz_name="Asia/Makassar")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def make_user(db: Session):
    """Insert a user directly; returns the stored record id"""

    def _make_user(
        username: str = "kasir1",
        password: str = "rahasia123",
        pin: Optional[str] = "123456",
        role: UserRole = UserRole.STAF,
        **fields,
    ) -> str:
        record = UserRepository(db).add(
            {
                "username": username,
                "hashed_password": hash_secret(password, rounds=4) if password else None,
                "hashed_pin": hash_secret(pin, rounds=4) if pin else None,
                "role": role.value,
                "permissions": [],
                "is_disabled": False,
                "failed_pin_attempts": 0,
                **fields,
            }
        )
        db.commit()
        return record.id

    return _make_user


@pytest.fixture
def app(session_factory, gateway: FakeGateway, notifier: RecordingNotifier, db: Session):
    app = create_app(
        session_factory=session_factory,
        gateway=gateway,
        notifier=notifier,
        resume_pending=False,
    )

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Create FastAPI test client with test database; lifespan runs inside the context"""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def new_tx():
    """Factory for NewTransaction with sensible Digiflazz defaults"""
    return make_new_transaction
