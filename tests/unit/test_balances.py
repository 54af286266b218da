"""Unit tests for the provider balance monitor"""

import httpx
from epulsaku.infrastructure.clients.digiflazz import DigiflazzClient
from epulsaku.infrastructure.clients.tokovoucher import TokoVoucherClient
from epulsaku.services.balances import (
    COMPLETED,
    COMPLETED_WITH_ERRORS,
    HALTED,
    BalanceMonitor,
    low_balance_event,
)


def _clients(digiflazz_deposit=500000, tokovoucher_body=None, **credentials):
    def digiflazz_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"deposit": digiflazz_deposit}})

    def tokovoucher_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=tokovoucher_body or {"status": 1, "data": {"saldo": 900000}})

    digiflazz = DigiflazzClient(
        username=credentials.get("username", "user"),
        api_key="key",
        base_url="https://digiflazz.test/v1",
        transport=httpx.MockTransport(digiflazz_handler),
    )
    tokovoucher = TokoVoucherClient(
        member_code=credentials.get("member_code", "M1"),
        secret="S1",
        base_url="https://tokovoucher.test/v1",
        member_base_url="https://tokovoucher.test",
        transport=httpx.MockTransport(tokovoucher_handler),
    )
    return digiflazz, tokovoucher


async def test_healthy_balances_send_nothing(notifier, clock):
    """Test both providers are checked and no alert goes out above the threshold"""
    monitor = BalanceMonitor(*_clients(), notifier, threshold=200000, clock=clock)

    report = await monitor.check_and_notify()

    assert report.status == COMPLETED
    assert report.checked_providers == ["Digiflazz", "TokoVoucher"]
    assert report.notifications_sent == 0
    assert notifier.notified == []


async def test_low_balance_alert(notifier, clock):
    """Test a balance below the threshold raises a System warning"""
    monitor = BalanceMonitor(*_clients(digiflazz_deposit=150000), notifier, threshold=200000, clock=clock)

    report = await monitor.check_and_notify()

    assert report.notifications_sent == 1
    event = notifier.notified[0]
    assert event.provider == "System"
    assert event.is_system_alert
    assert event.product_name == "Low Balance Alert"
    assert event.status == "Warning"
    assert event.transacted_by == "System Monitor"
    assert event.customer_no_display == "Provider: Digiflazz"
    assert event.failure_reason == "Saldo Digiflazz Anda kritis: Rp 150.000. Harap segera top up."
    assert event.ref_id == f"BALANCE_ALERT_DIGI_{int(clock.now.timestamp() * 1000)}"


async def test_provider_error_does_not_stop_the_sweep(notifier, clock):
    """Test one failing provider is reported while the other is still checked"""
    digiflazz, tokovoucher = _clients(
        digiflazz_deposit=100,
        tokovoucher_body={"status": 0, "error_msg": "Signature salah"},
    )
    monitor = BalanceMonitor(digiflazz, tokovoucher, notifier, threshold=200000, clock=clock)

    report = await monitor.check_and_notify()

    assert report.status == COMPLETED_WITH_ERRORS
    assert report.checked_providers == ["Digiflazz"]
    assert report.notifications_sent == 1
    assert len(report.errors) == 1
    assert "Signature salah" in report.errors[0]


async def test_unconfigured_provider_is_skipped(notifier, clock):
    """Test providers without credentials are left out"""
    monitor = BalanceMonitor(*_clients(member_code=""), notifier, threshold=200000, clock=clock)

    report = await monitor.check_and_notify()

    assert report.status == COMPLETED
    assert report.checked_providers == ["Digiflazz"]


async def test_halts_without_telegram(notifier, clock):
    """Test nothing is checked when alerts cannot be delivered"""
    notifier.configured = False
    monitor = BalanceMonitor(*_clients(digiflazz_deposit=1), notifier, threshold=200000, clock=clock)

    report = await monitor.check_and_notify()

    assert report.status == HALTED
    assert report.checked_providers == []
    assert notifier.notified == []


def test_low_balance_event_for_tokovoucher(clock):
    """Test the TokoVoucher alert layout fields"""
    event = low_balance_event("TokoVoucher", "TOKO", 1234567, clock.now)

    assert event.ref_id.startswith("BALANCE_ALERT_TOKO_")
    assert event.failure_reason == "Saldo TokoVoucher Anda kritis: Rp 1.234.567. Harap segera top up."
