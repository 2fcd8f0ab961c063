from __future__ import annotations
from typing import List

from ..core.types import Table
from ..core.utils import _is_missing

_QUOTE_TRIGGERS = (",", ";", '"', "\n", "\r")


def _row_values(table: Table) -> List[List[str]]:
    names = table.column_names
    return [["" if _is_missing(row.get(name)) else str(row[name]) for name in names] for row in table.rows]


def _quote_field(value: str) -> str:
    # the tokenizer trims unquoted whitespace, so padded values need quotes too
    if value != value.strip() or any(trigger in value for trigger in _QUOTE_TRIGGERS):
        return '"' + value.replace('"', '""') + '"'
    return value


def _quoted_line(values: List[str]) -> str:
    if values == [""]:
        # a lone empty field would otherwise be a blank line
        return '""'
    return ",".join(_quote_field(value) for value in values)


def to_delimited_text(table: Table, *, quote_fields: bool = True) -> str:
    """Rebuild comma-delimited text from a table for download.

    Fields containing a separator, a quote, a line break or surrounding
    whitespace are re-quoted unless ``quote_fields`` is false, which
    reproduces the legacy plain join.
    """
    if not quote_fields:
        lines = [",".join(table.column_names)]
        lines.extend(",".join(values) for values in _row_values(table))
        return "\n".join(lines)

    lines = [_quoted_line(list(table.column_names))]
    lines.extend(_quoted_line(values) for values in _row_values(table))
    return "\n".join(lines) + "\n"


def to_csv_bytes(table: Table) -> bytes:
    return to_delimited_text(table).encode("utf-8")
