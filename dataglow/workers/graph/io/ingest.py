from __future__ import annotations
import csv
import io
import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence, Set

from ..core.constants import (
    _BOOLEAN_TOKENS,
    _DATE_PATTERNS,
    _DEFAULT_INFERENCE_SAMPLE_ROWS,
    _LINE_SPLIT_PATTERN,
    _NUMERIC_PATTERN,
    INFERENCE_FIRST_ROW,
    INFERENCE_MAJORITY,
    INFERENCE_MODES,
)
from ..core.types import Column, Row, Table

logger = logging.getLogger(__name__)


class MalformedInputError(ValueError):
    """Raised when raw text cannot be turned into a header plus data rows."""


def infer_value_type(value: Optional[str]) -> str:
    """Classify a single cell; the first matching rule wins."""
    text = "" if value is None else str(value).strip()
    if not text:
        return "string"
    if _NUMERIC_PATTERN.match(text):
        return "number"
    if any(pattern.match(text) for pattern in _DATE_PATTERNS):
        return "date"
    if text.lower() in _BOOLEAN_TOKENS:
        return "boolean"
    return "string"


def _majority_type(values: Sequence[str]) -> str:
    counts = Counter(infer_value_type(value) for value in values if value and value.strip())
    if not counts:
        return "string"
    # ties go to the earlier rule: number, date, boolean, string
    precedence = {kind: index for index, kind in enumerate(("number", "date", "boolean", "string"))}
    kind, _ = min(counts.items(), key=lambda item: (-item[1], precedence[item[0]]))
    return kind


def infer_column_types(
    header: Sequence[str],
    rows: Sequence[Row],
    *,
    mode: str = INFERENCE_FIRST_ROW,
    sample_rows: int = _DEFAULT_INFERENCE_SAMPLE_ROWS,
) -> List[Column]:
    if mode not in INFERENCE_MODES:
        raise ValueError(f"Unsupported type inference mode: {mode!r}")

    if mode == INFERENCE_MAJORITY:
        sample = rows[: max(1, sample_rows)]
        return [Column(name=name, type=_majority_type([row.get(name, "") for row in sample])) for name in header]

    first = rows[0] if rows else {}
    return [Column(name=name, type=infer_value_type(first.get(name))) for name in header]


def detect_separator(header_line: str) -> str:
    if ";" in header_line and "," not in header_line:
        return ";"
    return ","


def _finish_field(chars: List[str], quoted: bool) -> str:
    text = "".join(chars)
    return text if quoted else text.strip()


def tokenize_line(line: str, separator: str = ",") -> List[str]:
    """Split one line into fields, honouring double-quoted sections."""
    fields: List[str] = []
    chars: List[str] = []
    in_quotes = False
    quoted = False
    index = 0
    length = len(line)

    while index < length:
        ch = line[index]
        if in_quotes:
            if ch == '"':
                if index + 1 < length and line[index + 1] == '"':
                    chars.append('"')
                    index += 2
                    continue
                in_quotes = False
            else:
                chars.append(ch)
        elif ch == '"':
            if not quoted and not "".join(chars).strip():
                chars = []
            in_quotes = True
            quoted = True
        elif ch == separator:
            fields.append(_finish_field(chars, quoted))
            chars = []
            quoted = False
        elif quoted and ch.isspace():
            # whitespace between a closing quote and the separator
            pass
        else:
            chars.append(ch)
        index += 1

    fields.append(_finish_field(chars, quoted))
    return fields


class _HeaderNormalizer:
    """Normalizes and deduplicates column headers for delimited inputs."""

    def __init__(self) -> None:
        self._base_counts: Dict[str, int] = {}
        self._used: Set[str] = set()

    def _clean(self, raw: Any, index: int) -> str:
        text = "" if raw is None else str(raw).strip()
        if not text:
            return f"column_{index}"
        return text

    def _allocate(self, base: str) -> str:
        count = self._base_counts.get(base, 0)
        candidate = base if count == 0 else f"{base}_{count + 1}"
        while candidate in self._used:
            count += 1
            candidate = f"{base}_{count + 1}"
        self._base_counts[base] = count + 1
        self._used.add(candidate)
        return candidate

    def normalize(self, fieldnames: Sequence[Any]) -> List[str]:
        return [self._allocate(self._clean(name, index)) for index, name in enumerate(fieldnames)]


def _split_lines(raw_text: str) -> List[str]:
    text = raw_text.lstrip("\ufeff")
    return [line for line in _LINE_SPLIT_PATTERN.split(text) if line.strip()]


def parse_table_strict(
    raw_text: Optional[str],
    *,
    inference: str = INFERENCE_FIRST_ROW,
    sample_rows: int = _DEFAULT_INFERENCE_SAMPLE_ROWS,
) -> Table:
    if raw_text is None or not isinstance(raw_text, str):
        raise MalformedInputError("File appears to be empty or invalid")

    lines = _split_lines(raw_text)
    if len(lines) < 2:
        raise MalformedInputError("File appears to be empty or invalid")

    separator = detect_separator(lines[0])
    header = _HeaderNormalizer().normalize(tokenize_line(lines[0], separator))
    if not header:
        raise MalformedInputError("Header row has no columns")

    rows: List[Row] = []
    for line in lines[1:]:
        tokens = tokenize_line(line, separator)
        width = min(len(tokens), len(header))
        rows.append({header[index]: tokens[index] for index in range(width)})

    columns = infer_column_types(header, rows, mode=inference, sample_rows=sample_rows)
    return Table(columns=columns, rows=rows)


def parse_table(
    raw_text: Optional[str],
    *,
    inference: str = INFERENCE_FIRST_ROW,
    sample_rows: int = _DEFAULT_INFERENCE_SAMPLE_ROWS,
) -> Table:
    """Tokenize and type raw delimited text.

    Never raises: any failure is logged and the empty table is returned, so
    callers never see a partially built table.
    """
    try:
        return parse_table_strict(raw_text, inference=inference, sample_rows=sample_rows)
    except Exception as exc:
        logger.warning("failed to parse delimited text", extra={"error": str(exc)})
        return Table.empty()


def decode_upload(body: bytes) -> str:
    return body.decode("utf-8-sig", errors="replace")


def excel_to_delimited_text(body: bytes) -> str:
    """Convert the first worksheet of a workbook into comma-delimited text."""
    try:
        import pandas as pd  # type: ignore
    except ImportError as exc:  # pragma: no cover - dependency issues are surfaced at runtime
        raise RuntimeError("Excel ingestion requires pandas with openpyxl installed") from exc

    with io.BytesIO(body) as stream:
        frame = pd.read_excel(stream, sheet_name=0, dtype=object)

    frame = frame.where(pd.notnull(frame), None)
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow([str(name) for name in frame.columns])
    for record in frame.itertuples(index=False, name=None):
        writer.writerow(["" if value is None else _excel_cell_text(value) for value in record])
    return output.getvalue()


def _excel_cell_text(value: Any) -> str:
    if hasattr(value, "strftime"):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


__all__ = [
    "MalformedInputError",
    "decode_upload",
    "detect_separator",
    "excel_to_delimited_text",
    "infer_column_types",
    "infer_value_type",
    "parse_table",
    "parse_table_strict",
    "tokenize_line",
]
