from __future__ import annotations
import logging
from typing import Any, Dict, List, MutableMapping, Set, Tuple

from ..core.constants import _MAX_CLEAN_PREVIEW_ROWS, _SPARSE_ROW_THRESHOLD
from ..core.state import _emit_callback, _failed_phase, _skipped_phase, _with_phase
from ..core.types import CleaningResult, CleaningStats, Row, Table
from ..core.utils import _canonical_date, _is_missing, _row_signature

logger = logging.getLogger(__name__)


def _has_enough_data(row: Row, column_names: List[str]) -> bool:
    if not column_names:
        return False
    missing = sum(1 for name in column_names if _is_missing(row.get(name)))
    return missing / len(column_names) < _SPARSE_ROW_THRESHOLD


def _standardize_dates(row: Row, date_columns: List[str]) -> Tuple[Row, int]:
    fixed = dict(row)
    standardized = 0
    for name in date_columns:
        value = fixed.get(name)
        if _is_missing(value):
            continue
        canonical = _canonical_date(value)
        if canonical is None:
            continue
        fixed[name] = canonical
        standardized += 1
    return fixed, standardized


def clean_table(table: Table) -> CleaningResult:
    """Drop sparse rows, normalize date cells and remove duplicate rows.

    The input table is left untouched. ``datesStandardized`` counts the
    normalized date cells of the rows that survive deduplication.
    """
    column_names = table.column_names
    date_columns = [column.name for column in table.columns_of_type("date")]
    stats = CleaningStats(original_rows=len(table.rows))

    kept: List[Row] = []
    for row in table.rows:
        if _has_enough_data(row, column_names):
            kept.append(row)
        else:
            stats.removed_rows += 1

    standardized_rows = [_standardize_dates(row, date_columns) for row in kept]

    seen: Set[Tuple[Tuple[str, str], ...]] = set()
    cleaned_rows: List[Row] = []
    for row, standardized in standardized_rows:
        signature = _row_signature(row, column_names)
        if signature in seen:
            stats.duplicates_removed += 1
            continue
        seen.add(signature)
        cleaned_rows.append(row)
        stats.dates_standardized += standardized

    stats.cleaned_rows = len(cleaned_rows)
    # equals duplicates_removed
    stats.missing_values_fixed = stats.original_rows - stats.removed_rows - stats.cleaned_rows

    logger.debug(
        "cleaned table",
        extra={"original_rows": stats.original_rows, "cleaned_rows": stats.cleaned_rows},
    )
    return CleaningResult(table=Table(columns=list(table.columns), rows=cleaned_rows), stats=stats)


def clean_node(state: MutableMapping[str, Any]) -> Dict[str, Any]:
    table: Table | None = state.get("table")
    if table is None or table.is_empty:
        return _skipped_phase(state, "clean", "No parsed table available to clean.")

    try:
        result = clean_table(table)
    except Exception as exc:
        return _failed_phase(state, "clean", exc)

    payload = {
        "status": "completed",
        "stats": result.stats.to_dict(),
        "columns": [column.to_dict() for column in result.table.columns],
        "preview": result.table.preview(_MAX_CLEAN_PREVIEW_ROWS),
    }
    update = _with_phase(
        state,
        "clean",
        payload,
        cleaned_table=result.table,
        cleaning_stats=result.stats,
    )
    _emit_callback(state, "clean", payload)
    return update
