from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .constants import COLUMN_TYPES

# A row is sparse: absent keys and empty strings both mean "missing".
Row = Dict[str, str]


@dataclass(frozen=True)
class Column:
    name: str
    type: str = "string"

    def __post_init__(self) -> None:
        if self.type not in COLUMN_TYPES:
            raise ValueError(f"Unsupported column type: {self.type!r}")

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "type": self.type}


@dataclass
class Table:
    columns: List[Column] = field(default_factory=list)
    rows: List[Row] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "Table":
        return cls(columns=[], rows=[])

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    @property
    def is_empty(self) -> bool:
        return not self.columns and not self.rows

    def columns_of_type(self, *types: str) -> List[Column]:
        return [column for column in self.columns if column.type in types]

    def preview(self, limit: int) -> List[Row]:
        return [dict(row) for row in self.rows[:limit]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "columns": [column.to_dict() for column in self.columns],
            "rows": [dict(row) for row in self.rows],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Table":
        """Rebuild a staged table, rejecting rows keyed outside the schema."""
        raw_columns = payload.get("columns") or []
        raw_rows = payload.get("rows") or []
        if not isinstance(raw_columns, list) or not isinstance(raw_rows, list):
            raise ValueError("Table payload must contain 'columns' and 'rows' lists")

        columns = [Column(name=str(item["name"]), type=str(item.get("type", "string"))) for item in raw_columns]
        names = {column.name for column in columns}
        if len(names) != len(columns):
            raise ValueError("Table payload has duplicate column names")

        rows: List[Row] = []
        for index, raw in enumerate(raw_rows):
            if not isinstance(raw, Mapping):
                raise ValueError(f"Row {index} is not an object")
            unknown = set(raw.keys()) - names
            if unknown:
                raise ValueError(f"Row {index} references unknown columns: {sorted(unknown)}")
            rows.append({str(key): "" if value is None else str(value) for key, value in raw.items()})
        return cls(columns=columns, rows=rows)


@dataclass
class CleaningStats:
    original_rows: int = 0
    cleaned_rows: int = 0
    removed_rows: int = 0
    missing_values_fixed: int = 0
    duplicates_removed: int = 0
    dates_standardized: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "originalRows": self.original_rows,
            "cleanedRows": self.cleaned_rows,
            "removedRows": self.removed_rows,
            "missingValuesFixed": self.missing_values_fixed,
            "duplicatesRemoved": self.duplicates_removed,
            "datesStandardized": self.dates_standardized,
        }


@dataclass
class CleaningResult:
    table: Table
    stats: CleaningStats


@dataclass
class ColumnInfo:
    name: str
    distinct: int
    missing: int
    type: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "distinct": self.distinct, "missing": self.missing, "type": self.type}


@dataclass
class NumericSummary:
    column: str
    min: Optional[float] = None
    max: Optional[float] = None
    mean: Optional[float] = None
    median: Optional[float] = None
    std: Optional[float] = None

    @property
    def is_defined(self) -> bool:
        return self.mean is not None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"column": self.column}
        if self.is_defined:
            payload.update(
                {"min": self.min, "max": self.max, "mean": self.mean, "median": self.median, "std": self.std}
            )
        return payload


@dataclass
class DataStats:
    total_rows: int
    total_columns: int
    missing_values: int
    duplicate_rows: int
    columns_info: List[ColumnInfo]
    summary: List[NumericSummary]

    def summary_for(self, column: str) -> NumericSummary:
        for entry in self.summary:
            if entry.column == column:
                return entry
        raise KeyError(column)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRows": self.total_rows,
            "totalColumns": self.total_columns,
            "missingValues": self.missing_values,
            "duplicateRows": self.duplicate_rows,
            "columnsInfo": [info.to_dict() for info in self.columns_info],
            "summary": [entry.to_dict() for entry in self.summary],
        }


@dataclass
class ChartSpec:
    kind: str
    title: str
    data: List[Dict[str, Any]]
    x_key: str
    y_key: str
    x_label: Optional[str] = None
    y_label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "title": self.title,
            "data": [dict(point) for point in self.data],
            "xKey": self.x_key,
            "yKey": self.y_key,
        }
        if self.x_label is not None:
            payload["xLabel"] = self.x_label
        if self.y_label is not None:
            payload["yLabel"] = self.y_label
        return payload


def charts_to_dict(charts: Mapping[str, ChartSpec]) -> Dict[str, Dict[str, Any]]:
    return {kind: spec.to_dict() for kind, spec in charts.items()}


@dataclass
class PipelineResult:
    phases: Dict[str, Dict[str, Any]]
    metrics: Dict[str, Any]
    manifest: Dict[str, Any]
    artifact_contents: Dict[str, Dict[str, Any]]
    table: Optional[Table] = None
    cleaned_table: Optional[Table] = None
    cleaning_stats: Optional[CleaningStats] = None
    stats: Optional[DataStats] = None
    charts: Dict[str, ChartSpec] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return all(payload.get("status") != "failed" for payload in self.phases.values())


def column_schema(columns: Sequence[Column]) -> List[Dict[str, str]]:
    return [column.to_dict() for column in columns]
