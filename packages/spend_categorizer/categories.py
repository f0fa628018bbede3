"""Closed enumerations shared by every stage of the categorization engine.

Values are the exact strings emitted on the wire and accepted from the model,
so members compare equal to their string form (``Category.DINING == "Dining"``).
"""

from __future__ import annotations

from enum import StrEnum


class Category(StrEnum):
    INCOME = "Income"
    RENT_MORTGAGE = "Rent/Mortgage"
    UTILITIES = "Utilities"
    GROCERIES = "Groceries"
    DINING = "Dining"
    TRANSPORT = "Transport"
    FUEL = "Fuel"
    HEALTH = "Health"
    SUBSCRIPTIONS = "Subscriptions"
    SHOPPING = "Shopping"
    EDUCATION = "Education"
    TRAVEL = "Travel"
    FEES = "Fees"
    TRANSFERS = "Transfers"
    CASH = "Cash"
    TAXES = "Taxes"
    CHARITY = "Charity"
    MISC = "Misc"


class TxType(StrEnum):
    CREDIT = "credit"
    DEBIT = "debit"
    TRANSFER = "transfer"
    REFUND = "refund"
    FEE = "fee"
    ATM = "atm"
    INTEREST = "interest"
    UNKNOWN = "unknown"


class Region(StrEnum):
    AU = "AU"
    US = "US"
    ALL = "ALL"


class Source(StrEnum):
    RULE = "rule"
    AI = "ai"


# Currencies accepted on input. Region inference keys off these.
SUPPORTED_CURRENCIES: tuple[str, ...] = ("AUD", "USD")

# Fallback category when the model gives no usable answer.
DEFAULT_CATEGORY: Category = Category.MISC

ALLOWED_CATEGORIES: tuple[str, ...] = tuple(c.value for c in Category)
ALLOWED_TX_TYPES: tuple[str, ...] = tuple(t.value for t in TxType)

_CATEGORY_BY_FOLDED: dict[str, Category] = {c.value.casefold(): c for c in Category}


def parse_category(value: object) -> Category | None:
    """Return the matching :class:`Category` (case-insensitive) or ``None``."""

    if not isinstance(value, str):
        return None
    return _CATEGORY_BY_FOLDED.get(value.strip().casefold())


def parse_tx_type(value: object) -> TxType | None:
    """Return the matching :class:`TxType` (case-insensitive) or ``None``."""

    if not isinstance(value, str):
        return None
    try:
        return TxType(value.strip().lower())
    except ValueError:
        return None


__all__ = [
    "ALLOWED_CATEGORIES",
    "ALLOWED_TX_TYPES",
    "Category",
    "DEFAULT_CATEGORY",
    "Region",
    "SUPPORTED_CURRENCIES",
    "Source",
    "TxType",
    "parse_category",
    "parse_tx_type",
]
