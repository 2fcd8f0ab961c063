from __future__ import annotations
import math
from datetime import date, datetime
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from .constants import _DATE_PARSE_FORMATS, _FLOAT_TEXT_PATTERN


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def _to_float(value: Any) -> Optional[float]:
    """Parse a numeric cell; blanks, text and non-finite values yield ``None``."""
    if value is None:
        return None
    text = str(value).strip()
    if not _FLOAT_TEXT_PATTERN.match(text):
        return None
    parsed = float(text)
    if math.isinf(parsed):
        return None
    return parsed


def _numeric_values(rows: Iterable[Mapping[str, Any]], column: str) -> List[float]:
    values: List[float] = []
    for row in rows:
        parsed = _to_float(row.get(column))
        if parsed is not None:
            values.append(parsed)
    return values


def _exponent_of(values: Sequence[float]) -> int:
    return math.frexp(max(abs(value) for value in values))[1]


def _mean(values: Sequence[float]) -> float:
    """Mean over power-of-two scaled values, finite even near the float limits."""
    exponent = _exponent_of(values)
    total = sum(math.ldexp(value, -exponent) for value in values)
    return math.ldexp(total / len(values), exponent)


def _parse_date(value: Any) -> Optional[date]:
    if _is_missing(value):
        return None
    text = str(value).strip()
    for fmt in _DATE_PARSE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _canonical_date(value: Any) -> Optional[str]:
    parsed = _parse_date(value)
    if parsed is None:
        return None
    # always a zero-padded four-digit year
    return parsed.isoformat()


def _row_signature(row: Mapping[str, Any], column_names: Sequence[str]) -> Tuple[Tuple[str, str], ...]:
    """Structural identity of a row: absent and empty fields compare equal."""
    return tuple((name, "" if _is_missing(row.get(name)) else str(row.get(name))) for name in sorted(column_names))


def _format_preview(value: Any) -> Any:
    if value is None:
        return None
    text = str(value)
    if len(text) > 80:
        return text[:77] + "..."
    return text
