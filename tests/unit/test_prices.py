"""Unit tests for the override cache and password-confirmed price saves"""

from epulsaku.domain.models import Provider, UserRole
from epulsaku.domain.pricing import PriceResolver
from epulsaku.infrastructure.cache import TimedCache
from epulsaku.infrastructure.database.repositories import PriceOverrideRepository
from epulsaku.services.prices import CachedPriceOverrides, store_price_settings


class Ticker:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_timed_cache_reloads_after_ttl():
    """Test values are reused inside the TTL and reloaded after it"""
    ticker = Ticker()
    loads = []
    cache = TimedCache(lambda: loads.append(1) or len(loads), ttl_seconds=60, clock=ticker)

    assert cache.get() == 1
    ticker.now = 59.9
    assert cache.get() == 1
    ticker.now = 60.0
    assert cache.get() == 2
    assert cache.fetched_at == 60.0

    cache.invalidate()
    assert cache.fetched_at is None
    assert cache.get() == 3


def test_cached_overrides_refresh_after_ttl(session_factory, db, clock):
    """Test the override source serves a cached snapshot until the TTL lapses"""
    ticker = Ticker()
    overrides = CachedPriceOverrides(session_factory, ttl_seconds=60, clock=ticker)
    resolver = PriceResolver(overrides)

    assert resolver.resolve(15000, "TSEL15", Provider.DIGIFLAZZ) == 16000

    PriceOverrideRepository(db).replace_all({"digiflazz::TSEL15": 15500}, "boss", clock())
    db.commit()

    assert resolver.resolve(15000, "TSEL15", Provider.DIGIFLAZZ) == 16000
    ticker.now = 61
    assert resolver.resolve(15000, "TSEL15", Provider.DIGIFLAZZ) == 15500
    assert overrides.all() == {"digiflazz::TSEL15": 15500}


def test_store_price_settings_requires_admin_password(db, session_factory, make_user, clock):
    """Test saving needs the admin's password and invalidates the cache"""
    make_user(username="boss", password="bosspass", role=UserRole.SUPER_ADMIN)
    cache = CachedPriceOverrides(session_factory, ttl_seconds=3600)
    assert cache.all() == {}

    wrong = store_price_settings(db, {"digiflazz::A": 1000}, "boss", "nope", cache=cache, clock=clock)
    assert not wrong.success
    assert wrong.message == "Incorrect admin password. Price settings not saved."

    missing = store_price_settings(db, {"digiflazz::A": 1000}, "ghost", "x", cache=cache, clock=clock)
    assert missing.message == "Admin user not found or password not set."

    ok = store_price_settings(
        db,
        {"digiflazz::A": 12000, "tokovoucher::B": 0, "bad": 500},
        "boss",
        "bosspass",
        cache=cache,
        clock=clock,
    )
    assert ok.success
    assert ok.message == "Price settings saved successfully."
    assert cache.all() == {"digiflazz::A": 12000}


def test_store_price_settings_replaces_whole_set(db, session_factory, make_user, clock):
    """Test a save drops overrides that are not in the new set"""
    make_user(username="boss", password="bosspass", role=UserRole.SUPER_ADMIN)

    store_price_settings(db, {"digiflazz::A": 12000, "digiflazz::B": 13000}, "boss", "bosspass", clock=clock)
    store_price_settings(db, {"digiflazz::B": 14000}, "boss", "bosspass", clock=clock)

    assert PriceOverrideRepository(db).load_all() == {"digiflazz::B": 14000}
