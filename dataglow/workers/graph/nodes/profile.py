from __future__ import annotations
import math
from typing import Any, Dict, List, MutableMapping, Optional, Sequence, Set

from ..core.state import _emit_callback, _failed_phase, _skipped_phase, _with_phase
from ..core.types import ColumnInfo, DataStats, NumericSummary, Table
from ..core.utils import _exponent_of, _is_missing, _mean, _numeric_values, _row_signature


def _median(sorted_values: Sequence[float]) -> float:
    count = len(sorted_values)
    middle = count // 2
    if count % 2 == 0:
        return sorted_values[middle - 1] / 2 + sorted_values[middle] / 2
    return sorted_values[middle]


def summarize_numeric(column: str, values: Sequence[float]) -> NumericSummary:
    """Population statistics (divisor ``n``) over the parsed values of a column."""
    if not values:
        return NumericSummary(column=column)
    ordered = sorted(values)
    count = len(ordered)
    exponent = _exponent_of(ordered)
    scaled = [math.ldexp(value, -exponent) for value in ordered]
    scaled_mean = sum(scaled) / count
    variance = sum((value - scaled_mean) ** 2 for value in scaled) / count
    return NumericSummary(
        column=column,
        min=ordered[0],
        max=ordered[-1],
        mean=_mean(ordered),
        median=_median(ordered),
        std=math.ldexp(math.sqrt(variance), exponent),
    )


def count_duplicate_rows(table: Table) -> int:
    names = table.column_names
    unique = {_row_signature(row, names) for row in table.rows}
    return len(table.rows) - len(unique)


def compute_stats(table: Table) -> DataStats:
    columns_info: List[ColumnInfo] = []
    missing_total = 0

    for column in table.columns:
        distinct: Set[str] = set()
        missing = 0
        for row in table.rows:
            value = row.get(column.name)
            if _is_missing(value):
                missing += 1
            else:
                distinct.add(str(value))
        missing_total += missing
        columns_info.append(ColumnInfo(name=column.name, distinct=len(distinct), missing=missing, type=column.type))

    summary = [
        summarize_numeric(column.name, _numeric_values(table.rows, column.name))
        for column in table.columns_of_type("number")
    ]

    return DataStats(
        total_rows=len(table.rows),
        total_columns=len(table.columns),
        missing_values=missing_total,
        duplicate_rows=count_duplicate_rows(table),
        columns_info=columns_info,
        summary=summary,
    )


def _completeness(stats: DataStats) -> Optional[float]:
    cells = stats.total_rows * stats.total_columns
    if not cells:
        return None
    return 1.0 - stats.missing_values / cells


def profile_node(state: MutableMapping[str, Any]) -> Dict[str, Any]:
    table: Table | None = state.get("table")
    cleaned: Table | None = state.get("cleaned_table")
    if cleaned is None:
        return _skipped_phase(state, "profile", "No cleaned table available to profile.")

    try:
        original_stats = compute_stats(table) if table is not None else None
        stats = compute_stats(cleaned)
    except Exception as exc:
        return _failed_phase(state, "profile", exc)

    payload: Dict[str, Any] = {
        "status": "completed",
        "cleaned": stats.to_dict(),
        "datasetCompleteness": _completeness(stats),
    }
    if original_stats is not None:
        payload["original"] = original_stats.to_dict()

    update = _with_phase(state, "profile", payload, stats=stats, original_stats=original_stats)
    _emit_callback(state, "profile", payload)
    return update
