from __future__ import annotations
from typing import Any, Dict, MutableMapping

from ..core.constants import _DEFAULT_INFERENCE_SAMPLE_ROWS, _MAX_PREVIEW_ROWS, INFERENCE_FIRST_ROW
from ..core.state import _emit_callback, _failed_phase, _with_phase
from ..core.types import Table
from ..core.utils import _format_preview
from ..io.ingest import MalformedInputError, parse_table_strict


def ingest_node(state: MutableMapping[str, Any]) -> Dict[str, Any]:
    source = state.get("source", {}) or {}
    raw_text = state.get("raw_text")

    try:
        table = parse_table_strict(
            raw_text,
            inference=state.get("inference_mode") or INFERENCE_FIRST_ROW,
            sample_rows=state.get("inference_sample_rows") or _DEFAULT_INFERENCE_SAMPLE_ROWS,
        )
    except MalformedInputError as exc:
        return _failed_phase(state, "ingest", exc, expected=True, table=Table.empty(), raw_text=None)
    except Exception as exc:
        return _failed_phase(state, "ingest", exc, table=Table.empty(), raw_text=None)

    payload = {
        "status": "completed",
        "fileName": source.get("fileName"),
        "rows": len(table.rows),
        "columns": [column.to_dict() for column in table.columns],
        "preview": [
            {name: _format_preview(value) for name, value in row.items()}
            for row in table.preview(_MAX_PREVIEW_ROWS)
        ],
    }

    update = _with_phase(state, "ingest", payload, table=table, raw_text=None)
    _emit_callback(state, "ingest", payload)
    return update
