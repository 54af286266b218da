"""Integration tests for API endpoints"""

import httpx
import pytest
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient
from epulsaku.api.dependencies import get_balance_monitor, get_price_list
from epulsaku.domain.exceptions import UpstreamApiError
from epulsaku.domain.models import ProviderResult, TransactionStatus, UserRole
from epulsaku.infrastructure.clients.digiflazz import DigiflazzClient
from epulsaku.infrastructure.clients.tokovoucher import TokoVoucherClient
from epulsaku.services.balances import BalanceMonitor
from epulsaku.services.price_list import DigiflazzPriceList
from epulsaku.services.reconciliation import TickOutcome
from epulsaku.utils.date_utils import to_iso, utc_now


@pytest.fixture
def tx_payload():
    """Manually recorded Digiflazz purchase"""
    return {
        "id": "DF-MANUAL-001",
        "product_name": "Telkomsel 15.000",
        "details": "081234567890",
        "cost_price": 15000,
        "status": "Pending",
        "timestamp": to_iso(utc_now()),
        "buyer_sku_code": "TSEL15",
        "original_customer_no": "081234567890",
        "product_category_from_provider": "Pulsa",
        "product_brand_from_provider": "TELKOMSEL",
        "provider": "digiflazz",
        "transacted_by": "kasir1",
    }


@pytest.fixture
def purchase_payload():
    return {
        "username": "kasir1",
        "pin": "123456",
        "provider": "digiflazz",
        "product_code": "TSEL15",
        "product_name": "Telkomsel 15.000",
        "customer_no": "081234567890",
        "cost_price": 15000,
        "category": "Pulsa",
        "brand": "TELKOMSEL",
    }


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["watched_transactions"] == 0


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "epulsaku_transactions_created_total" in response.text


def test_request_id_is_echoed(client: TestClient):
    """Test an inbound X-Request-ID is returned unchanged"""
    response = client.get("/health", headers={"X-Request-ID": "req-42"})
    assert response.headers["X-Request-ID"] == "req-42"


def test_transaction_crud(client: TestClient, tx_payload):
    """Test create, list, read, update and delete through the API"""
    response = client.post("/v1/transactions", json=tx_payload)
    assert response.status_code == 201

    listed = client.get("/v1/transactions").json()
    assert [tx["id"] for tx in listed] == ["DF-MANUAL-001"]
    assert listed[0]["selling_price"] == 16000
    assert listed[0]["category_key"] == "Pulsa"

    response = client.patch(
        "/v1/transactions/DF-MANUAL-001",
        json={"status": "Sukses", "serial_number": "SN123", "expected_status": "Pending"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "Sukses"
    assert response.json()["serial_number"] == "SN123"

    response = client.patch(
        "/v1/transactions/DF-MANUAL-001",
        json={"status": "Gagal", "expected_status": "Pending"},
    )
    assert response.status_code == 409
    assert client.get("/v1/transactions/DF-MANUAL-001").json()["status"] == "Sukses"

    assert client.delete("/v1/transactions/DF-MANUAL-001").status_code == 200
    assert client.get("/v1/transactions/DF-MANUAL-001").status_code == 404
    assert client.delete("/v1/transactions/DF-MANUAL-001").status_code == 404


def test_create_transaction_validation(client: TestClient, tx_payload):
    """Test malformed submissions are rejected"""
    tx_payload["provider"] = "unknown"
    assert client.post("/v1/transactions", json=tx_payload).status_code == 422


def test_purchase_success(client: TestClient, make_user, gateway, notifier, purchase_payload):
    """Test POST /v1/transactions/purchase with a Sukses answer"""
    make_user()
    gateway.purchases.append(ProviderResult(status=TransactionStatus.SUKSES, cost=15000, serial_number="SN1"))

    response = client.post("/v1/transactions/purchase", json=purchase_payload)

    assert response.status_code == 200
    body = response.json()
    assert body["success"]
    assert body["transaction"]["status"] == "Sukses"
    assert body["transaction"]["selling_price"] == 16000
    assert body["transaction"]["id"].startswith("DF-")
    assert len(notifier.notified) == 1


def test_purchase_pending_is_watched(client: TestClient, make_user, gateway, purchase_payload):
    """Test a transport failure leaves a watched Pending record"""
    make_user()
    gateway.purchases.append(UpstreamApiError("Digiflazz API timeout after 15.0s"))

    response = client.post("/v1/transactions/purchase", json=purchase_payload)

    assert response.status_code == 200
    assert response.json()["transaction"]["status"] == "Pending"
    assert client.get("/health").json()["watched_transactions"] == 1


def test_purchase_wrong_pin_and_lockout(client: TestClient, make_user, gateway, notifier, purchase_payload):
    """Test wrong PINs return 400 until the lockout returns 403"""
    make_user()
    purchase_payload["pin"] = "000000"

    for _ in range(2):
        response = client.post("/v1/transactions/purchase", json=purchase_payload)
        assert response.status_code == 400

    response = client.post("/v1/transactions/purchase", json=purchase_payload)
    assert response.status_code == 403
    assert gateway.purchase_calls == []
    assert [e.status for e in notifier.dispatched] == ["Account Disabled"]


def test_recheck_resolves_pending(client: TestClient, gateway, notifier, tx_payload):
    """Test a manual recheck applies the provider's answer"""
    client.post("/v1/transactions", json=tx_payload)
    gateway.queue_status("DF-MANUAL-001", ProviderResult(status=TransactionStatus.SUKSES, serial_number="SN9"))

    response = client.post("/v1/transactions/DF-MANUAL-001/recheck")

    assert response.status_code == 200
    assert response.json()["outcome"] == "resolved"
    assert response.json()["transaction"]["status"] == "Sukses"
    assert response.json()["transaction"]["serial_number"] == "SN9"
    assert notifier.notified[0].additional_info == "Manual Check"


@patch("epulsaku.services.reconciliation.ReconciliationSupervisor.reconcile_once", new_callable=AsyncMock)
def test_recheck_upstream_error(mock_reconcile: AsyncMock, client: TestClient, tx_payload):
    """Test a failed provider query is reported as 503"""
    mock_reconcile.return_value = TickOutcome.UPSTREAM_ERROR
    client.post("/v1/transactions", json=tx_payload)

    response = client.post("/v1/transactions/DF-MANUAL-001/recheck")

    assert response.status_code == 503
    mock_reconcile.assert_awaited_once()


def test_recheck_unknown_transaction(client: TestClient):
    """Test recheck of a missing id"""
    assert client.post("/v1/transactions/ghost/recheck").status_code == 404


def test_pin_verify_endpoint(client: TestClient, make_user):
    """Test PIN verification answers"""
    make_user()

    ok = client.post("/v1/pin/verify", json={"username": "kasir1", "pin": "123456"})
    assert ok.status_code == 200
    assert ok.json()["is_valid"]

    bad = client.post("/v1/pin/verify", json={"username": "kasir1", "pin": "000000"})
    assert not bad.json()["is_valid"]
    assert bad.json()["attempts_remaining"] == 2


def test_login_and_history(client: TestClient, make_user):
    """Test successful login returns the user and is audited"""
    make_user()

    response = client.post(
        "/v1/auth/login",
        json={"username": "kasir1", "password": "rahasia123"},
        headers={"User-Agent": "pytest-agent", "X-Forwarded-For": "10.0.0.7, 10.0.0.1"},
    )

    assert response.status_code == 200
    user = response.json()["user"]
    assert user["username"] == "kasir1"
    assert "hashed_password" not in user
    assert "hashed_pin" not in user

    history = client.get("/v1/auth/login-history", params={"username": "kasir1"}).json()
    assert history["activities"][0]["ip_address"] == "10.0.0.7"
    assert history["activities"][0]["user_agent"] == "pytest-agent"


def test_login_throttle(client: TestClient, make_user):
    """Test repeated failures from one IP get a 429 with the lockout time"""
    make_user()
    for _ in range(5):
        response = client.post("/v1/auth/login", json={"username": "kasir1", "password": "wrong"})
        assert response.status_code == 401

    response = client.post("/v1/auth/login", json={"username": "kasir1", "password": "rahasia123"})

    assert response.status_code == 429
    assert response.json()["lockout_time"] > 0

    other_ip = client.post(
        "/v1/auth/login",
        json={"username": "kasir1", "password": "rahasia123"},
        headers={"X-Real-IP": "10.9.9.9"},
    )
    assert other_ip.status_code == 200


def test_login_disabled_account(client: TestClient, make_user):
    """Test disabled accounts get 403"""
    make_user(is_disabled=True)
    response = client.post("/v1/auth/login", json={"username": "kasir1", "password": "rahasia123"})
    assert response.status_code == 403


def test_user_administration(client: TestClient, notifier):
    """Test signup, staff creation, status toggle, PIN change and deletion"""
    boss = client.post("/v1/users", json={"username": "boss", "password": "bosspass", "pin": "111111"})
    assert boss.status_code == 201
    assert boss.json()["role"] == "super_admin"
    boss_id = boss.json()["id"]

    denied = client.post("/v1/users", json={"username": "kasir1", "password": "kasirpass", "role": "staf"})
    assert denied.status_code == 403

    staff = client.post(
        "/v1/users",
        json={
            "username": "kasir1",
            "password": "kasirpass",
            "pin": "123456",
            "role": "staf",
            "creator_id": boss_id,
            "admin_password_confirmation": "bosspass",
        },
    )
    assert staff.status_code == 201
    staff_id = staff.json()["id"]

    assert [u["username"] for u in client.get("/v1/users").json()] == ["boss", "kasir1"]

    toggled = client.post(f"/v1/users/{staff_id}/toggle-status", json={"admin_id": boss_id})
    assert toggled.status_code == 200
    assert notifier.dispatched[-1].status == "Account Disabled"
    assert client.post(f"/v1/users/{staff_id}/toggle-status", json={"admin_id": staff_id}).status_code == 403

    changed = client.post(
        "/v1/users/change-pin",
        json={"username": "kasir1", "current_password": "kasirpass", "new_pin": "654321"},
    )
    assert changed.status_code == 200
    wrong = client.post(
        "/v1/users/change-password",
        json={"username": "kasir1", "old_password": "nope", "new_password": "another1"},
    )
    assert wrong.status_code == 400

    assert client.delete(f"/v1/users/{staff_id}", params={"admin_id": boss_id}).status_code == 200
    assert client.delete(f"/v1/users/{staff_id}", params={"admin_id": boss_id}).status_code == 404


def test_price_settings(client: TestClient, make_user, tx_payload):
    """Test overrides are password-protected and feed new transactions"""
    make_user(username="boss", password="bosspass", role=UserRole.SUPER_ADMIN)

    rejected = client.put(
        "/v1/price-settings",
        json={"settings": {"digiflazz::TSEL15": 15500}, "admin_username": "boss", "admin_password": "nope"},
    )
    assert rejected.status_code == 403

    saved = client.put(
        "/v1/price-settings",
        json={
            "settings": {"digiflazz::TSEL15": 15500, "bad-key": 100, "digiflazz::X": -1},
            "admin_username": "boss",
            "admin_password": "bosspass",
        },
    )
    assert saved.status_code == 200
    assert client.get("/v1/price-settings").json() == {"settings": {"digiflazz::TSEL15": 15500}}

    client.post("/v1/transactions", json=tx_payload)
    assert client.get("/v1/transactions/DF-MANUAL-001").json()["selling_price"] == 15500


def _digiflazz_client(handler) -> DigiflazzClient:
    return DigiflazzClient(
        username="user",
        api_key="key",
        base_url="https://digiflazz.test/v1",
        transport=httpx.MockTransport(handler),
    )


def test_digiflazz_price_list_endpoint(client: TestClient, app):
    """Test the price list is served, cached and force-refreshed"""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(
            200,
            json={
                "data": [
                    {
                        "product_name": "Telkomsel 15.000",
                        "category": "Pulsa",
                        "brand": "TELKOMSEL",
                        "seller_name": "Seller A",
                        "price": 14950,
                        "buyer_sku_code": "TSEL15",
                        "buyer_product_status": True,
                        "seller_product_status": True,
                    }
                ]
            },
        )

    price_list = DigiflazzPriceList(_digiflazz_client(handler), ttl_seconds=60)
    app.dependency_overrides[get_price_list] = lambda: price_list

    response = client.get("/v1/providers/digiflazz/price-list")
    assert response.status_code == 200
    assert response.json()[0]["buyer_sku_code"] == "TSEL15"
    assert response.json()[0]["stock"] is None

    client.get("/v1/providers/digiflazz/price-list")
    assert len(calls) == 1
    client.get("/v1/providers/digiflazz/price-list", params={"force_refresh": True})
    assert len(calls) == 2


def test_digiflazz_price_list_upstream_error(client: TestClient, app):
    """Test provider failures surface as 502"""
    price_list = DigiflazzPriceList(_digiflazz_client(lambda request: httpx.Response(500)))
    app.dependency_overrides[get_price_list] = lambda: price_list

    assert client.get("/v1/providers/digiflazz/price-list").status_code == 502


def test_balance_check_endpoint(client: TestClient, app, notifier):
    """Test the balance sweep reports providers and alerts on a low balance"""
    tokovoucher = TokoVoucherClient(
        member_code="M1",
        secret="S1",
        member_base_url="https://tokovoucher.test",
        transport=httpx.MockTransport(
            lambda request: httpx.Response(200, json={"status": 1, "data": {"saldo": 50000}})
        ),
    )
    digiflazz = _digiflazz_client(lambda request: httpx.Response(200, json={"data": {"deposit": 750000}}))
    app.dependency_overrides[get_balance_monitor] = lambda: BalanceMonitor(
        digiflazz, tokovoucher, notifier, threshold=200000
    )

    response = client.post("/v1/providers/balance-check")

    assert response.status_code == 200
    assert response.json() == {
        "status": "Completed successfully",
        "checked_providers": ["Digiflazz", "TokoVoucher"],
        "notifications_sent": 1,
        "errors": [],
    }
    assert notifier.notified[0].customer_no_display == "Provider: TokoVoucher"
