"""Unit tests for selling-price resolution"""

import pytest
from epulsaku.domain.models import Provider
from epulsaku.domain.pricing import (
    PriceResolver,
    default_markup,
    namespaced_key,
    resolve_selling_price,
    sanitize_overrides,
)


@pytest.mark.parametrize(
    "cost,expected",
    [
        (0, 1000),
        (15000, 16000),
        (19999, 20999),
        (20000, 21500),
        (50000, 51500),
        (50001, 52001),
        (100000, 102000),
    ],
)
def test_default_markup_tiers(cost, expected):
    """Test tier boundaries of the default markup"""
    assert default_markup(cost) == expected


def test_namespaced_key_accepts_enum_and_string():
    """Test override key format"""
    assert namespaced_key(Provider.DIGIFLAZZ, "XYZ123") == "digiflazz::XYZ123"
    assert namespaced_key("tokovoucher", "FF70") == "tokovoucher::FF70"


def test_override_is_returned_verbatim():
    """Test a positive override wins even when below cost"""
    overrides = {"digiflazz::XYZ123": 9000}
    assert resolve_selling_price(15000, "XYZ123", Provider.DIGIFLAZZ, overrides) == 9000


def test_override_is_scoped_to_provider():
    """Test the same product code under another provider falls back to markup"""
    overrides = {"digiflazz::XYZ123": 9000}
    assert resolve_selling_price(15000, "XYZ123", Provider.TOKOVOUCHER, overrides) == 16000


@pytest.mark.parametrize("bad", [0, -500, "12000", None, True])
def test_invalid_override_is_ignored(bad):
    """Test non-positive or non-integer overrides fall back to markup"""
    overrides = {"digiflazz::XYZ123": bad}
    assert resolve_selling_price(20000, "XYZ123", Provider.DIGIFLAZZ, overrides) == 21500


def test_price_resolver_reads_source(overrides, price_resolver):
    """Test PriceResolver consults its override source per lookup"""
    assert price_resolver.resolve(15000, "TSEL15", Provider.DIGIFLAZZ) == 16000

    overrides.overrides["digiflazz::TSEL15"] = 15500
    assert price_resolver.resolve(15000, "TSEL15", Provider.DIGIFLAZZ) == 15500
    assert price_resolver.resolve(15000, "TSEL15", "digiflazz") == 15500


def test_sanitize_overrides_drops_bad_entries():
    """Test only provider::code keys with positive integer prices survive"""
    raw = {
        "digiflazz::A": 12000,
        "tokovoucher::B": 0,
        "digiflazz::C": -1,
        "no-namespace": 5000,
        "digiflazz::D": "7000",
        "digiflazz::E": 7000.5,
        "digiflazz::F": True,
    }
    assert sanitize_overrides(raw) == {"digiflazz::A": 12000}
