# ruff: noqa: E501
"""Static categorization rules.

Rules are evaluated in declaration order and the first match wins. Order is
part of the contract: specific merchant rules ("uber eats") must precede the
generic ones they overlap with ("uber"). :func:`find_shadowed_keywords`
detects orderings that would make a keyword unreachable.

Keywords are written in normalized form (see
:func:`spend_categorizer.normalizer.normalize_text`) because they are matched
by substring containment against normalized text.
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .categories import Category, Region, TxType
from .logging_setup import get_logger
from .normalizer import normalize_text

KEYWORD_CONFIDENCE: float = 0.95
REGEX_CONFIDENCE: float = 0.90

_logger = get_logger("spend_categorizer.rules")


@dataclass(frozen=True, slots=True)
class Rule:
    """A hand-authored matcher mapping normalized text to a category.

    ``type`` overrides the amount-sign heuristic when set; ``confidence``
    overrides the keyword/regex defaults when set.
    """

    id: str
    region: Region
    category: Category
    keywords: tuple[str, ...] = ()
    regex: str | None = None
    type: TxType | None = None
    confidence: float | None = None

    def __post_init__(self) -> None:
        # Rules built in code may use plain strings for the enum fields.
        object.__setattr__(self, "region", Region(self.region))
        object.__setattr__(self, "category", Category(self.category))
        if self.type is not None:
            object.__setattr__(self, "type", TxType(self.type))
        object.__setattr__(self, "keywords", tuple(self.keywords))


class RuleMatch(NamedTuple):
    rule: Rule
    confidence: float


@lru_cache(maxsize=256)
def _compiled(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


def match_rule(text: str, region: Region, rules: Sequence[Rule]) -> RuleMatch | None:
    """Return the first rule matching normalized ``text`` in ``region``.

    A rule scoped to a specific region is skipped unless it equals ``region``;
    with ``region == ALL`` only ``ALL`` rules are eligible. Keywords are tested
    before the rule's regex.
    """

    for rule in rules:
        if rule.region != Region.ALL and rule.region != region:
            continue
        if rule.keywords and any(k in text for k in rule.keywords):
            conf = rule.confidence if rule.confidence is not None else KEYWORD_CONFIDENCE
            return RuleMatch(rule, conf)
        if rule.regex and _compiled(rule.regex).search(text):
            conf = rule.confidence if rule.confidence is not None else REGEX_CONFIDENCE
            return RuleMatch(rule, conf)
    return None


def _r(
    rule_id: str,
    region: str,
    keywords: Sequence[str],
    category: Category,
    *,
    type: TxType | None = None,
    confidence: float | None = None,
) -> Rule:
    return Rule(
        id=rule_id,
        region=Region(region),
        category=category,
        keywords=tuple(keywords),
        type=type,
        confidence=confidence,
    )


C = Category
T = TxType

RULES: tuple[Rule, ...] = (
    # Money movement first: these carry a fixed type.
    _r("inc_payroll", "ALL", ["payroll", "salary", "wages", "direct deposit"], C.INCOME, type=T.CREDIT, confidence=0.99),
    _r("inc_interest", "ALL", ["interest", "int payment"], C.INCOME, type=T.INTEREST, confidence=0.99),
    _r("xfer_internal", "ALL", ["transfer", "xfer", "to savings", "from savings"], C.TRANSFERS, type=T.TRANSFER, confidence=0.98),
    _r("atm_cash", "ALL", ["atm withdrawal", "cash withdrawal"], C.CASH, type=T.ATM, confidence=0.98),
    _r("bank_fee", "ALL", ["monthly fee", "account fee", "overdraft fee"], C.FEES, type=T.FEE, confidence=0.98),
    _r("refund", "ALL", ["refund", "reversal", "chargeback"], C.TRANSFERS, type=T.REFUND, confidence=0.98),
    # Subscriptions
    _r("sub_netflix", "ALL", ["netflix"], C.SUBSCRIPTIONS),
    _r("sub_spotify", "ALL", ["spotify"], C.SUBSCRIPTIONS),
    _r("sub_apple", "ALL", ["apple com bill", "itunes"], C.SUBSCRIPTIONS),
    _r("sub_microsoft", "ALL", ["microsoft", "xbox"], C.SUBSCRIPTIONS),
    _r("sub_google", "ALL", ["google services", "google storage", "youtube premium", "yt premium", "google play"], C.SUBSCRIPTIONS),
    # Groceries
    _r("gro_woolworths", "AU", ["woolworths", "woolies"], C.GROCERIES),
    _r("gro_coles", "AU", ["coles"], C.GROCERIES),
    _r("gro_aldi_au", "AU", ["aldi"], C.GROCERIES),
    _r("gro_walmart", "US", ["walmart"], C.GROCERIES),
    _r("gro_target", "US", ["target"], C.GROCERIES),
    _r("gro_kroger", "US", ["kroger", "fred meyer", "ralphs", "smiths"], C.GROCERIES),
    _r("gro_wholefoods", "US", ["whole foods"], C.GROCERIES),
    _r("gro_traderjoes", "US", ["trader joes", "trader joe s"], C.GROCERIES),
    # Fuel
    _r("fuel_caltex", "AU", ["caltex", "ampol"], C.FUEL),
    _r("fuel_bp", "ALL", ["bp"], C.FUEL),
    _r("fuel_shell", "ALL", ["shell"], C.FUEL),
    _r("fuel_7eleven", "AU", ["7 eleven"], C.FUEL),
    _r("fuel_chevron", "US", ["chevron"], C.FUEL),
    # Utilities / telco
    _r("util_optus", "AU", ["optus"], C.UTILITIES),
    _r("util_telstra", "AU", ["telstra"], C.UTILITIES),
    _r("util_nbn", "AU", ["nbn"], C.UTILITIES),
    _r("util_att", "US", ["at t", "att"], C.UTILITIES),
    _r("util_verizon", "US", ["verizon"], C.UTILITIES),
    _r("util_comcast", "US", ["comcast", "xfinity"], C.UTILITIES),
    # Dining
    _r("din_maccas", "AU", ["mcdonalds", "maccas"], C.DINING),
    _r("din_kfc", "ALL", ["kfc"], C.DINING),
    _r("din_starbucks", "US", ["starbucks"], C.DINING),
    _r("din_ubereats", "ALL", ["uber eats", "ubereats", "doordash", "menulog"], C.DINING),
    # Housing
    _r("rent_keywords", "ALL", ["rent", "property management", "realty", "strata"], C.RENT_MORTGAGE),
    _r("mortgage", "ALL", ["mortgage", "home loan"], C.RENT_MORTGAGE),
    # Generic transport last: "uber" would otherwise swallow "uber eats".
    _r("transport_uber", "ALL", ["uber", "lyft", "ola"], C.TRANSPORT),
)

del C, T


# ---------------------------------------------------------------------------
# Ordering checks
# ---------------------------------------------------------------------------


class ShadowedKeyword(NamedTuple):
    rule_id: str
    keyword: str
    shadowed_by: str
    by_keyword: str


def _regions_overlap(a: Region, b: Region) -> bool:
    return Region.ALL in (a, b) or a == b


def find_shadowed_keywords(rules: Sequence[Rule]) -> list[ShadowedKeyword]:
    """Return keywords that can never decide a match.

    A keyword of a later rule is shadowed when an earlier rule with an
    overlapping region carries a keyword contained in it: any text containing
    the later keyword also contains the earlier one, so the earlier rule wins.
    """

    found: list[ShadowedKeyword] = []
    for j, later in enumerate(rules):
        for kw in later.keywords:
            for earlier in rules[:j]:
                if not _regions_overlap(earlier.region, later.region):
                    continue
                hit = next((e for e in earlier.keywords if e in kw), None)
                if hit is not None:
                    found.append(ShadowedKeyword(later.id, kw, earlier.id, hit))
                    break
    return found


# ---------------------------------------------------------------------------
# Operator-authored rule files
# ---------------------------------------------------------------------------


class _RuleSpec(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    id: str
    region: Region = Region.ALL
    category: Category
    keywords: list[str] = []
    regex: str | None = None
    type: TxType | None = None
    confidence: float | None = None

    @field_validator("id")
    @classmethod
    def _non_empty_id(cls, v: str) -> str:
        if not v:
            raise ValueError("id must be non-empty")
        return v

    @field_validator("keywords")
    @classmethod
    def _normalized_keywords(cls, v: list[str]) -> list[str]:
        for kw in v:
            if not kw or normalize_text(kw) != kw:
                raise ValueError(
                    f"keyword {kw!r} is not in normalized form (expected {normalize_text(kw)!r})"
                )
        return v

    @field_validator("regex")
    @classmethod
    def _compilable(cls, v: str | None) -> str | None:
        if v is None:
            return None
        try:
            re.compile(v)
        except re.error as exc:
            raise ValueError(f"invalid regex {v!r}: {exc}") from exc
        return v

    @field_validator("confidence")
    @classmethod
    def _unit_interval(cls, v: float | None) -> float | None:
        if v is not None and not 0.0 <= v <= 1.0:
            raise ValueError("confidence must be within [0,1]")
        return v


class _RuleFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rules: list[_RuleSpec]


def load_rules(path: str | Path) -> tuple[Rule, ...]:
    """Load an ordered rule list from a JSON file ``{"rules": [...]}``.

    Each rule needs at least one keyword or a regex, and ids must be unique.
    Raises ``ValueError`` naming the offending rule; logs a warning for every
    shadowed keyword since that usually means the file is mis-ordered.
    """

    p = Path(path)
    try:
        parsed = _RuleFile.model_validate_json(p.read_text(encoding="utf-8"))
    except ValidationError as exc:
        raise ValueError(f"Invalid rule file {p}: {exc}") from exc

    seen: set[str] = set()
    rules: list[Rule] = []
    for pos, spec in enumerate(parsed.rules):
        if spec.id in seen:
            raise ValueError(f"Invalid rule file {p}: duplicate rule id {spec.id!r}")
        if not spec.keywords and spec.regex is None:
            raise ValueError(
                f"Invalid rule file {p}: rule {spec.id!r} (position {pos}) needs keywords or a regex"
            )
        seen.add(spec.id)
        rules.append(
            Rule(
                id=spec.id,
                region=spec.region,
                category=spec.category,
                keywords=tuple(spec.keywords),
                regex=spec.regex,
                type=spec.type,
                confidence=spec.confidence,
            )
        )

    for s in find_shadowed_keywords(rules):
        _logger.warning(
            'rules:shadowed rule=%s keyword="%s" by_rule=%s by_keyword="%s"',
            s.rule_id,
            s.keyword,
            s.shadowed_by,
            s.by_keyword,
        )
    _logger.info("rules:loaded path=%s count=%d", p, len(rules))
    return tuple(rules)


def dump_rules(rules: Sequence[Rule]) -> str:
    """Serialize rules to the JSON shape accepted by :func:`load_rules`."""

    items = []
    for r in rules:
        item: dict[str, object] = {"id": r.id, "region": r.region.value, "category": r.category.value}
        if r.keywords:
            item["keywords"] = list(r.keywords)
        if r.regex is not None:
            item["regex"] = r.regex
        if r.type is not None:
            item["type"] = r.type.value
        if r.confidence is not None:
            item["confidence"] = r.confidence
        items.append(item)
    return json.dumps({"rules": items}, indent=2, ensure_ascii=False)


__all__ = [
    "KEYWORD_CONFIDENCE",
    "REGEX_CONFIDENCE",
    "RULES",
    "Rule",
    "RuleMatch",
    "ShadowedKeyword",
    "dump_rules",
    "find_shadowed_keywords",
    "load_rules",
    "match_rule",
]
