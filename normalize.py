"""
Name Resolver – text, id, match type and date normalization shared by the mapping core.
"""

import re
from datetime import date, datetime, timedelta
from typing import Any, Optional

_WHITESPACE = re.compile(r"\s+")
_AUTO_CLAUSES = {"close-match", "loose-match", "substitutes", "complements"}
_EXPRESSION_PREFIXES = ("asin=", "category=", "asin-expanded=", "brand=")
_CATEGORY_EXPRESSION = re.compile(r'^category="(.*)"$')


def norm_text(value: Any) -> str:
    """Trim, lowercase and collapse inner whitespace. None becomes ""."""
    if value is None:
        return ""
    return _WHITESPACE.sub(" ", str(value).strip().lower())


def clean_id(value: Any) -> Optional[str]:
    """Entity id as string; spreadsheet floats like "123.0" lose the suffix."""
    if value is None:
        return None
    raw = str(value).strip()
    if not raw:
        return None
    return raw[:-2] if raw.endswith(".0") else raw


def normalize_match_type(raw: Optional[str]) -> str:
    norm = (raw or "").strip().upper()
    if not norm:
        return "UNKNOWN"
    for match_type in ("EXACT", "PHRASE", "BROAD"):
        if match_type in norm:
            return match_type
    if "TARGET" in norm:
        return "TARGETING_EXPRESSION"
    return "UNKNOWN"


def infer_is_negative(match_type_raw: Optional[str]) -> bool:
    return "negative" in (match_type_raw or "").lower()


def is_targeting_expression(expression_norm: Optional[str]) -> bool:
    """Auto-targeting clauses and asin=/category=/brand= style expressions."""
    expr = norm_text(expression_norm)
    return expr in _AUTO_CLAUSES or expr.startswith(_EXPRESSION_PREFIXES)


def effective_match_type(
    expression_norm: Optional[str],
    match_type_norm: Optional[str] = None,
    match_type_raw: Optional[str] = None,
) -> str:
    """Match type used in target lookup keys, on both the snapshot side and the report side."""
    if is_targeting_expression(expression_norm):
        return "TARGETING_EXPRESSION"
    normalized = normalize_match_type(match_type_norm or match_type_raw or "")
    if normalized != "UNKNOWN":
        return normalized
    if "target" in (match_type_raw or "").lower():
        return "TARGETING_EXPRESSION"
    return "UNKNOWN"


def category_name(expression_norm: str) -> Optional[str]:
    """The name inside category="..." or None for any other expression."""
    m = _CATEGORY_EXPRESSION.match(expression_norm or "")
    return m.group(1) if m else None


def to_date(value: Any) -> Optional[date]:
    """Accept date, datetime, "YYYY-MM-DD" or an ISO timestamp string; empty values give None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    if not raw:
        return None
    return date.fromisoformat(raw[:10])


def add_days(d: date, days: int) -> date:
    return d + timedelta(days=days)
