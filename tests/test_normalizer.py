import pytest

from spend_categorizer.categories import Region
from spend_categorizer.normalizer import normalize_text, region_from, transaction_text
from tests.helpers.factories import make_tx

SAMPLES = [
    "",
    "   ",
    "NETFLIX.COM   123456",
    "7-ELEVEN 2041 SYDNEY",
    "PAYPAL *SPOTIFY 4029357733",
    "Café Zürich — Bahnhofstraße",
    "foo_bar__baz",
    "UBER   *EATS\tPENDING\n",
    "İstanbul ATM #00912",
    "a1b22c333",
    "١٢٣ arabic-indic digits",
]


@pytest.mark.parametrize("s", SAMPLES)
def test_normalize_is_idempotent(s: str):
    once = normalize_text(s)
    assert normalize_text(once) == once


def test_case_and_format_insensitive():
    assert normalize_text("NETFLIX.COM   123456") == normalize_text("netflix com") == "netflix com"


def test_digit_runs_removed_single_digits_kept():
    assert normalize_text("7-ELEVEN 2041 SYDNEY") == "7 eleven sydney"
    assert normalize_text("a1b22c333") == "a1b c"


def test_unicode_letters_survive_and_underscores_do_not():
    assert normalize_text("Café Zürich") == "café zürich"
    assert normalize_text("foo_bar") == "foo bar"


def test_empty_and_none():
    assert normalize_text("") == ""
    assert normalize_text(None) == ""
    assert normalize_text(" .,;- ") == ""


def test_transaction_text_joins_merchant_then_description():
    tx = make_tx("Card purchase 0042", merchant_name="Woolworths Metro")
    assert transaction_text(tx) == "woolworths metro card purchase"


def test_transaction_text_tolerates_missing_merchant():
    assert transaction_text(make_tx("NETFLIX.COM AU")) == "netflix com au"
    assert transaction_text(make_tx("")) == ""


@pytest.mark.parametrize(
    ("currency", "hint", "expected"),
    [
        ("AUD", None, Region.AU),
        ("USD", None, Region.US),
        ("NZD", None, Region.ALL),
        (None, None, Region.ALL),
        ("USD", "AU", Region.AU),
        ("AUD", Region.US, Region.US),
    ],
)
def test_region_from(currency, hint, expected):
    assert region_from(currency, hint) is expected
