"""Selling-price resolution: operator overrides first, tiered markup otherwise"""

from typing import Mapping, Optional, Protocol

from epulsaku.domain.models import Provider


class PriceOverrideSource(Protocol):
    def get_override(self, namespaced_key: str) -> Optional[int]:
        ...


def namespaced_key(provider: Provider | str, product_code: str) -> str:
    """Override key, e.g. digiflazz::XYZ123"""
    provider_value = provider.value if isinstance(provider, Provider) else provider
    return f"{provider_value}::{product_code}"


def default_markup(cost_price: int) -> int:
    """
    Tiered markup applied when no override exists.

    - below 20.000:            +1.000
    - 20.000 up to 50.000:     +1.500
    - above 50.000:            +2.000
    """
    if cost_price < 20_000:
        return cost_price + 1000
    elif cost_price <= 50_000:
        return cost_price + 1500
    else:
        return cost_price + 2000


def resolve_selling_price(
    cost_price: int,
    product_code: str,
    provider: Provider | str,
    overrides: Mapping[str, int],
) -> int:
    """Return the positive override for provider::productCode verbatim, else the default markup"""
    override = overrides.get(namespaced_key(provider, product_code))
    if isinstance(override, int) and not isinstance(override, bool) and override > 0:
        return override
    return default_markup(cost_price)


class PriceResolver:
    """Binds resolve_selling_price to an override source"""

    def __init__(self, source: PriceOverrideSource):
        self.source = source

    def resolve(self, cost_price: int, product_code: str, provider: Provider | str) -> int:
        key = namespaced_key(provider, product_code)
        override = self.source.get_override(key)
        return resolve_selling_price(cost_price, product_code, provider, {key: override} if override else {})


def sanitize_overrides(raw: Mapping[str, object]) -> dict[str, int]:
    """Keep only namespaced keys with positive integer prices"""
    valid: dict[str, int] = {}
    for key, price in raw.items():
        if "::" not in key:
            continue
        if isinstance(price, bool) or not isinstance(price, int) or price <= 0:
            continue
        valid[key] = price
    return valid
