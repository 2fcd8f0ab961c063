from __future__ import annotations
import math
from datetime import date
from typing import Any, Dict, List, MutableMapping, Optional, Tuple

from ..core.constants import (
    CATEGORICAL_TYPES,
    _MAX_BAR_CATEGORIES,
    _MAX_HISTOGRAM_BINS,
    _MAX_PIE_CATEGORIES,
    _MAX_SCATTER_POINTS,
    _UNKNOWN_CATEGORY,
)
from ..core.state import _emit_callback, _failed_phase, _skipped_phase, _with_phase
from ..core.types import ChartSpec, Row, Table, charts_to_dict
from ..core.utils import _is_missing, _mean, _numeric_values, _parse_date, _to_float


def _category_counts(rows: List[Row], column: str, limit: int) -> List[Tuple[str, int]]:
    counts: Dict[str, int] = {}
    for row in rows:
        value = row.get(column)
        category = _UNKNOWN_CATEGORY if _is_missing(value) else str(value)
        counts[category] = counts.get(category, 0) + 1
    # sorted() is stable, so ties keep first-seen order
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return ranked[:limit]


def _category_bar_chart(table: Table, column: str) -> ChartSpec:
    data = [
        {column: category, "count": count, "category": category}
        for category, count in _category_counts(table.rows, column, _MAX_BAR_CATEGORIES)
    ]
    return ChartSpec(kind="barChart", title=f"Count by {column}", data=data, x_key="category", y_key="count")


def _histogram_bins(values: List[float]) -> List[Dict[str, Any]]:
    low = min(values)
    high = max(values)
    bin_count = min(_MAX_HISTOGRAM_BINS, math.ceil(math.sqrt(len(values))))
    # halved values keep high - low finite near the float limits
    half_low = low / 2
    half_width = (high / 2 - half_low) / bin_count
    if high == low or half_width == 0:
        label = f"{low:.1f}-{high:.1f}"
        return [{"range": label, "count": len(values), "category": label}]

    def _edge(index: int) -> float:
        edge = 2 * (half_low + index * half_width)
        return edge if math.isfinite(edge) else high

    bins: List[Dict[str, Any]] = []
    for index in range(bin_count):
        label = f"{_edge(index):.1f}-{_edge(index + 1):.1f}"
        bins.append({"range": label, "count": 0, "category": label})
    for value in values:
        # the maximum lands exactly on the upper edge and belongs to the last bin
        position = min(int((value / 2 - half_low) // half_width), bin_count - 1)
        bins[position]["count"] += 1
    return bins


def _histogram_chart(table: Table, column: str) -> Optional[ChartSpec]:
    values = sorted(_numeric_values(table.rows, column))
    if not values:
        return None
    return ChartSpec(
        kind="barChart",
        title=f"Distribution of {column}",
        data=_histogram_bins(values),
        x_key="category",
        y_key="count",
    )


def _line_chart(table: Table, date_column: str, value_column: str) -> ChartSpec:
    groups: Dict[str, List[float]] = {}
    for row in table.rows:
        raw_date = row.get(date_column)
        value = _to_float(row.get(value_column))
        if _is_missing(raw_date) or value is None:
            continue
        groups.setdefault(str(raw_date), []).append(value)

    def _chronological(key: str) -> Tuple[int, date]:
        parsed = _parse_date(key)
        return (0, parsed) if parsed is not None else (1, date.min)

    data = []
    for raw_date in sorted(groups, key=_chronological):
        values = groups[raw_date]
        average = _mean(values)
        data.append({date_column: raw_date, value_column: average, "date": raw_date, "value": average})

    return ChartSpec(kind="lineChart", title=f"{value_column} Over Time", data=data, x_key="date", y_key="value")


def _scatter_chart(table: Table, x_column: str, y_column: str) -> ChartSpec:
    points: List[Dict[str, float]] = []
    for row in table.rows:
        x = _to_float(row.get(x_column))
        y = _to_float(row.get(y_column))
        if x is None or y is None:
            continue
        points.append({"x": x, "y": y})
        if len(points) >= _MAX_SCATTER_POINTS:
            break
    return ChartSpec(
        kind="scatterChart",
        title=f"{x_column} vs {y_column}",
        data=points,
        x_key="x",
        y_key="y",
        x_label=x_column,
        y_label=y_column,
    )


def _pie_chart(table: Table, column: str) -> ChartSpec:
    data = [
        {"name": category, "value": count}
        for category, count in _category_counts(table.rows, column, _MAX_PIE_CATEGORIES)
    ]
    return ChartSpec(kind="pieChart", title=f"Distribution of {column}", data=data, x_key="name", y_key="value")


def compute_charts(table: Table) -> Dict[str, ChartSpec]:
    """Build chart-ready aggregates; kinds without qualifying columns are omitted."""
    numeric = [column.name for column in table.columns_of_type("number")]
    categorical = [column.name for column in table.columns_of_type(*CATEGORICAL_TYPES)]
    dates = [column.name for column in table.columns_of_type("date")]

    charts: Dict[str, ChartSpec] = {}

    if categorical:
        charts["barChart"] = _category_bar_chart(table, categorical[0])
    elif numeric:
        histogram = _histogram_chart(table, numeric[0])
        if histogram is not None:
            charts["barChart"] = histogram

    if dates and numeric:
        charts["lineChart"] = _line_chart(table, dates[0], numeric[0])

    if len(numeric) >= 2:
        charts["scatterChart"] = _scatter_chart(table, numeric[0], numeric[1])

    if categorical:
        charts["pieChart"] = _pie_chart(table, categorical[1] if len(categorical) > 1 else categorical[0])

    return charts


def charts_node(state: MutableMapping[str, Any]) -> Dict[str, Any]:
    cleaned: Table | None = state.get("cleaned_table")
    if cleaned is None:
        return _skipped_phase(state, "charts", "No cleaned table available for charts.")

    try:
        charts = compute_charts(cleaned)
    except Exception as exc:
        return _failed_phase(state, "charts", exc)

    payload = {"status": "completed", "kinds": list(charts.keys()), "charts": charts_to_dict(charts)}
    update = _with_phase(state, "charts", payload, charts=charts)
    _emit_callback(state, "charts", payload)
    return update
