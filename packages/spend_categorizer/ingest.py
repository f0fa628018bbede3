"""Load transactions from JSON or CSV files.

Accepted shapes:

- JSON object ``{"transactions": [...]}`` (the dashboard's request body).
- JSON array of transaction objects.
- CSV with a header row. Columns use the same names as
  :meth:`Transaction.from_mapping` (``id``, ``description``, ``merchantName``,
  ``amount``, ``currency``, ``date``, ``mcc``, ``regionHint``); unknown columns
  are ignored.

Errors raise ``ValueError`` naming the offending record position (CSV rows are
numbered from 2, the first line after the header).
"""

from __future__ import annotations

import csv
import json
from collections.abc import Iterable, Mapping
from io import StringIO
from pathlib import Path
from typing import Any

from .models import Transaction

_REQUIRED_CSV_COLUMNS: frozenset[str] = frozenset({"id", "description", "amount", "currency"})


def _from_records(records: Iterable[Any], *, where: str, first_pos: int) -> list[Transaction]:
    out: list[Transaction] = []
    for pos, record in enumerate(records, start=first_pos):
        if not isinstance(record, Mapping):
            raise ValueError(f"{where}: record {pos} is not an object")
        try:
            out.append(Transaction.from_mapping(record))
        except ValueError as exc:
            raise ValueError(f"{where}: record {pos}: {exc}") from exc
    return out


def parse_json_transactions(text: str, *, where: str = "<json>") -> list[Transaction]:
    try:
        body = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{where}: invalid JSON: {exc}") from exc
    if isinstance(body, Mapping):
        records = body.get("transactions")
        if not isinstance(records, list):
            raise ValueError(f"{where}: expected a 'transactions' array")
    elif isinstance(body, list):
        records = body
    else:
        raise ValueError(f"{where}: expected a JSON object or array")
    return _from_records(records, where=where, first_pos=0)


def parse_csv_transactions(text: str, *, where: str = "<csv>") -> list[Transaction]:
    # StringIO keeps quoted fields with embedded newlines intact.
    with StringIO(text) as f:
        reader = csv.DictReader(f)
        headers = reader.fieldnames
        if headers is None:
            raise ValueError(f"{where}: CSV appears to have no header row")
        missing = sorted(_REQUIRED_CSV_COLUMNS - {h.strip() for h in headers})
        if missing:
            raise ValueError(f"{where}: CSV header missing columns: {', '.join(missing)}")
        rows = [{(k or "").strip(): v for k, v in row.items()} for row in reader]
    return _from_records(rows, where=where, first_pos=2)


def load_transactions(path: str | Path) -> list[Transaction]:
    """Read transactions from ``path``; ``.csv`` files are parsed as CSV, others as JSON."""

    p = Path(path)
    text = p.read_text(encoding="utf-8-sig")
    if p.suffix.lower() == ".csv":
        return parse_csv_transactions(text, where=str(p))
    return parse_json_transactions(text, where=str(p))


__all__ = ["load_transactions", "parse_csv_transactions", "parse_json_transactions"]
