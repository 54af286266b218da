"""Unit tests for category and icon classification"""

import pytest
from epulsaku.domain.categorization import determine_category


@pytest.mark.parametrize(
    "category,brand,expected",
    [
        ("Pulsa", "TELKOMSEL", "Pulsa"),
        ("Data", "paket data xl", "Pulsa"),
        ("PLN", "PLN", "Token Listrik"),
        ("Token Listrik", "", "Token Listrik"),
        ("Games", "FREE FIRE", "FREE FIRE"),
        ("Games", "Mobile Legends", "MOBILE LEGENDS"),
        ("Games", "GENSHIN IMPACT", "GENSHIN IMPACT"),
        ("Games", "HONKAI STAR RAIL", "HONKAI STAR RAIL"),
        ("Voucher Game", "STEAM", "Game Topup"),
        ("E-Money", "DANA", "E-Money"),
        ("Saldo", "GOPAY", "E-Money"),
    ],
)
def test_determine_category_rules(category, brand, expected):
    """Test first matching rule decides the category; icon mirrors it"""
    details = determine_category(category, brand)

    assert details.category_key == expected
    assert details.icon_name == expected


def test_pulsa_wins_over_pln():
    """Test rule order: a pulsa label beats a PLN brand"""
    assert determine_category("Pulsa", "PLN").category_key == "Pulsa"


def test_pln_brand_beats_game_keyword():
    """Test the PLN brand rule is checked before game keywords"""
    assert determine_category("Voucher Game", "PLN").category_key == "Token Listrik"


def test_case_insensitive_matching():
    """Test labels are upper-cased before matching"""
    assert determine_category("pulsa", "telkomsel").category_key == "Pulsa"


def test_unknown_product_defaults():
    """Test unmatched labels fall back to Default"""
    details = determine_category("Streaming", "NETFLIX")

    assert details.category_key == "Default"
    assert details.icon_name == "Default"


def test_missing_labels_fall_back_to_digital_service():
    """Test an empty category resolves through the Digital Service icon"""
    details = determine_category(None, None)

    assert details.category_key == "Digital Service"
