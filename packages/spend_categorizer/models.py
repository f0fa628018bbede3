"""Data models for ``spend_categorizer``.

Domain records (:class:`Transaction`, :class:`Categorization`,
:class:`CachedVerdict`) are frozen dataclasses: they are created once and only
read afterwards. Shapes that cross a trust boundary (model output, cache
snapshots, learning-queue files) are Pydantic models so that validation lives
in one place instead of ad-hoc ``isinstance`` chains.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from .categories import (
    SUPPORTED_CURRENCIES,
    Category,
    Region,
    Source,
    TxType,
    parse_category,
    parse_tx_type,
)

# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------


def _first_present(record: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        val = record.get(key)
        if val is None:
            continue
        if isinstance(val, str) and not val.strip():
            continue
        return val
    return None


def _to_decimal(raw: Any, *, tx_id: str) -> Decimal:
    if raw is None:
        raise ValueError(f"Invalid transaction {tx_id!r}: amount is required")
    # bool is an int subclass; never a valid amount
    if isinstance(raw, bool):
        raise ValueError(f"Invalid transaction {tx_id!r}: amount must be numeric")
    try:
        d = Decimal(str(raw).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid transaction {tx_id!r}: invalid amount {raw!r}") from exc
    if not d.is_finite():
        raise ValueError(f"Invalid transaction {tx_id!r}: amount must be finite")
    return d


@dataclass(frozen=True, slots=True)
class Transaction:
    """One bank-ledger entry to classify.

    Attributes
    ----------
    id:
        Opaque identifier, unique within the caller's batch.
    description:
        Free-text statement description.
    amount:
        Signed amount; positive values are money in, negative values money out.
    currency:
        One of :data:`~spend_categorizer.categories.SUPPORTED_CURRENCIES`.
    date:
        Posting date as provided by the bank feed (not interpreted).
    merchant_name:
        Optional cleaned merchant name; usually more reliable than
        ``description`` and placed first in the matched text.
    mcc:
        Optional merchant category code, forwarded to the model only.
    region_hint:
        Optional explicit region that overrides currency-based inference.
    """

    id: str
    description: str
    amount: Decimal
    currency: str
    date: str = ""
    merchant_name: str | None = None
    mcc: str | None = None
    region_hint: Region | None = None

    def __post_init__(self) -> None:
        # Library callers may pass int, float or str amounts.
        object.__setattr__(self, "amount", _to_decimal(self.amount, tx_id=self.id))
        if self.currency not in SUPPORTED_CURRENCIES:
            raise ValueError(
                f"Invalid transaction {self.id!r}: unsupported currency {self.currency!r} "
                f"(expected one of {', '.join(SUPPORTED_CURRENCIES)})"
            )
        if self.region_hint is not None and self.region_hint not in (Region.AU, Region.US):
            raise ValueError(
                f"Invalid transaction {self.id!r}: region hint must be AU or US when set"
            )

    @classmethod
    def from_mapping(cls, record: Mapping[str, Any]) -> Transaction:
        """Build a transaction from a wire/CSV mapping.

        Accepts camelCase keys as sent by the web client (``merchantName``,
        ``regionHint``) as well as their snake_case spellings. Blank strings
        are treated as absent.
        """

        raw_id = _first_present(record, "id")
        if raw_id is None:
            raise ValueError("Invalid transaction: id is required")
        tx_id = str(raw_id).strip()

        currency_raw = _first_present(record, "currency")
        currency = str(currency_raw).strip().upper() if currency_raw is not None else ""

        hint_raw = _first_present(record, "regionHint", "region_hint")
        region_hint: Region | None = None
        if hint_raw is not None:
            try:
                region_hint = Region(str(hint_raw).strip().upper())
            except ValueError as exc:
                raise ValueError(
                    f"Invalid transaction {tx_id!r}: unknown region hint {hint_raw!r}"
                ) from exc

        merchant = _first_present(record, "merchantName", "merchant_name", "merchant")
        mcc = _first_present(record, "mcc")
        description = record.get("description")
        date = _first_present(record, "date")

        return cls(
            id=tx_id,
            description=str(description) if description is not None else "",
            amount=_to_decimal(record.get("amount"), tx_id=tx_id),
            currency=currency,
            date=str(date) if date is not None else "",
            merchant_name=str(merchant) if merchant is not None else None,
            mcc=str(mcc).strip() if mcc is not None else None,
            region_hint=region_hint,
        )


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Categorization:
    """The engine's verdict for one :class:`Transaction`.

    ``rule_id`` is set only for rule verdicts and ``rationale`` only for fresh
    model verdicts (cache hits carry neither).
    """

    transaction_id: str
    category: Category
    type: TxType
    source: Source
    confidence: float
    rule_id: str | None = None
    rationale: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON wire shape used by the dashboard API."""

        out: dict[str, Any] = {
            "id": self.transaction_id,
            "category": self.category.value,
            "type": self.type.value,
            "source": self.source.value,
            "confidence": self.confidence,
        }
        if self.rule_id is not None:
            out["ruleId"] = self.rule_id
        if self.rationale is not None:
            out["aiReason"] = self.rationale
        return out


@dataclass(frozen=True, slots=True)
class CachedVerdict:
    """The part of a model verdict that is memoized per cache key."""

    category: Category
    type: TxType
    confidence: float


# ---------------------------------------------------------------------------
# Model output (boundary validation)
# ---------------------------------------------------------------------------


class AiVerdict(BaseModel):
    """Lenient view of the model's JSON object.

    Every field is optional. Values outside the closed enumerations, a
    non-numeric confidence, or a confidence outside ``[0, 1]`` are coerced to
    ``None`` so callers apply the same defaults as for a missing field.
    """

    model_config = ConfigDict(extra="ignore")

    category: Category | None = None
    type: TxType | None = None
    confidence: float | None = None
    reason: str | None = None

    @field_validator("category", mode="before")
    @classmethod
    def _known_category(cls, v: Any) -> Category | None:
        return parse_category(v)

    @field_validator("type", mode="before")
    @classmethod
    def _known_type(cls, v: Any) -> TxType | None:
        return parse_tx_type(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def _numeric_confidence(cls, v: Any) -> float | None:
        # Strings like "0.9" are not numbers in the model's JSON contract.
        if isinstance(v, bool) or not isinstance(v, int | float):
            return None
        fv = float(v)
        if fv != fv or not 0.0 <= fv <= 1.0:
            return None
        return fv

    @field_validator("reason", mode="before")
    @classmethod
    def _non_empty_reason(cls, v: Any) -> str | None:
        if not isinstance(v, str):
            return None
        return v.strip() or None


# ---------------------------------------------------------------------------
# DTOs for on-disk files
# ---------------------------------------------------------------------------


class CacheSnapshotEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: str
    category: Category
    type: TxType
    confidence: float


class CacheSnapshotFile(BaseModel):
    """Top-level schema for a verdict-cache snapshot JSON file."""

    model_config = ConfigDict(extra="forbid")

    schema_version: int
    entries: list[CacheSnapshotEntry]


class LearningQueueFile(BaseModel):
    """Exported learning queue: ``{"keys": [...]}`` in first-seen order."""

    model_config = ConfigDict(extra="forbid")

    keys: list[str]


__all__ = [
    "AiVerdict",
    "CacheSnapshotEntry",
    "CacheSnapshotFile",
    "CachedVerdict",
    "Categorization",
    "LearningQueueFile",
    "Transaction",
]
