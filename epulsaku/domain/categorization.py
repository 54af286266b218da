"""Category and icon classification for transactions.

Rules are evaluated top to bottom and the first match wins, so the table
order is the priority order.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

PULSA_KEYWORDS = ("PULSA", "PAKET DATA")
PLN_KEYWORDS = ("PLN", "TOKEN LISTRIK", "TOKEN")
GAME_BRANDS = ("FREE FIRE", "MOBILE LEGENDS", "GENSHIN IMPACT", "HONKAI STAR RAIL")
GAME_KEYWORDS = ("GAME", "TOPUP", "VOUCHER GAME", "DIAMOND", "UC")
EMONEY_KEYWORDS = ("E-MONEY", "E-WALLET", "SALDO DIGITAL", "DANA", "OVO", "GOPAY", "SHOPEEPAY", "MAXIM")

# Icon keys known to the storefront, in lookup order
ICON_KEYS = (
    "Pulsa",
    "Token Listrik",
    "Game Topup",
    "Digital Service",
    "FREE FIRE",
    "MOBILE LEGENDS",
    "GENSHIN IMPACT",
    "HONKAI STAR RAIL",
    "PLN",
    "E-Money",
    "Default",
)

DEFAULT_CATEGORY = "Default"


@dataclass(frozen=True)
class ProductLabels:
    """Upper-cased classifier inputs"""

    category: str
    brand: str

    def category_or_brand_has(self, keywords: Tuple[str, ...]) -> bool:
        return any(k in self.category or k in self.brand for k in keywords)


@dataclass
class CategoryDetails:
    category_key: str
    icon_name: str


Rule = Tuple[Callable[[ProductLabels], bool], str]


def _brand_rule(brand: str) -> Rule:
    return (lambda labels: brand in labels.brand, brand)


RULES: List[Rule] = [
    (lambda labels: labels.category_or_brand_has(PULSA_KEYWORDS), "Pulsa"),
    (
        lambda labels: "PLN" in labels.brand or any(k in labels.category for k in PLN_KEYWORDS),
        "Token Listrik",
    ),
    *[_brand_rule(brand) for brand in GAME_BRANDS],
    (lambda labels: labels.category_or_brand_has(GAME_KEYWORDS), "Game Topup"),
    (lambda labels: labels.category_or_brand_has(EMONEY_KEYWORDS), "E-Money"),
]


def _icon_fallback(product_category: str) -> Optional[str]:
    fallback = (product_category or "Digital Service").upper()
    return next((key for key in ICON_KEYS if key.upper() in fallback), None)


def determine_category(
    product_category: Optional[str],
    product_brand: Optional[str],
    provider: Optional[str] = None,
) -> CategoryDetails:
    """Classify a product into its category key; icon name mirrors the key"""
    labels = ProductLabels(
        category=(product_category or "").upper(),
        brand=(product_brand or "").upper(),
    )
    for predicate, category_key in RULES:
        if predicate(labels):
            return CategoryDetails(category_key=category_key, icon_name=category_key)

    icon_match = _icon_fallback(product_category or "")
    if icon_match:
        return CategoryDetails(category_key=icon_match, icon_name=icon_match)

    return CategoryDetails(category_key=DEFAULT_CATEGORY, icon_name=DEFAULT_CATEGORY)
