from __future__ import annotations
from typing import Any, Dict, List, Mapping, MutableMapping, Optional

from ..core.constants import _CLEANED_CSV_NAME, PHASE_ORDER
from ..core.state import _emit_callback, _with_phase
from ..core.types import ChartSpec, CleaningStats, DataStats, Table, charts_to_dict
from ..io.export import to_delimited_text


def _manifest_entries_for_artifacts(
    artifact_contents: Mapping[str, Mapping[str, Any]],
    artifact_prefix: str,
) -> List[Dict[str, Any]]:
    entries: List[Dict[str, Any]] = []
    for relative_key in sorted(artifact_contents.keys()):
        spec = artifact_contents[relative_key]
        description = spec.get("description")
        if not isinstance(description, str) or not description.strip():
            description = "Generated artifact from the cleaning pipeline."
        entries.append(
            {
                "name": relative_key.replace("/", "_"),
                "description": description,
                "contentType": spec["contentType"],
                "key": f"{artifact_prefix}/{relative_key}",
            }
        )
    return entries


def _result_artifacts(
    cleaned: Optional[Table],
    cleaning_stats: Optional[CleaningStats],
    stats: Optional[DataStats],
    charts: Optional[Mapping[str, ChartSpec]],
) -> Dict[str, Dict[str, Any]]:
    artifacts: Dict[str, Dict[str, Any]] = {}
    if cleaned is not None:
        artifacts[f"results/{_CLEANED_CSV_NAME}"] = {
            "kind": "text",
            "text": to_delimited_text(cleaned),
            "description": "Cleaned dataset as comma-delimited text.",
            "contentType": "text/csv",
        }
    if cleaning_stats is not None:
        artifacts["results/cleaning_stats.json"] = {
            "kind": "json",
            "data": cleaning_stats.to_dict(),
            "description": "Row accounting for the cleaning pass.",
            "contentType": "application/json",
        }
    if stats is not None:
        artifacts["results/data_stats.json"] = {
            "kind": "json",
            "data": stats.to_dict(),
            "description": "Column cardinality, missingness and numeric summaries of the cleaned dataset.",
            "contentType": "application/json",
        }
    if charts:
        artifacts["results/charts.json"] = {
            "kind": "json",
            "data": charts_to_dict(charts),
            "description": "Chart-ready aggregates keyed by chart kind.",
            "contentType": "application/json",
        }
    return artifacts


def finalize_node(state: MutableMapping[str, Any]) -> Dict[str, Any]:
    phases: Dict[str, Dict[str, Any]] = state.get("phase_outputs", {})
    table: Optional[Table] = state.get("table")
    cleaned: Optional[Table] = state.get("cleaned_table")
    cleaning_stats: Optional[CleaningStats] = state.get("cleaning_stats")
    stats: Optional[DataStats] = state.get("stats")
    charts: Optional[Dict[str, ChartSpec]] = state.get("charts")

    metrics: Dict[str, Any] = {
        "rows": len(table.rows) if table is not None else 0,
        "columns": len(table.columns) if table is not None else 0,
        "cleanedRows": len(cleaned.rows) if cleaned is not None else None,
        "datasetCompleteness": phases.get("profile", {}).get("datasetCompleteness"),
        "charts": sorted(charts.keys()) if charts else [],
        "failedPhases": [name for name in PHASE_ORDER if phases.get(name, {}).get("status") == "failed"],
    }
    if cleaning_stats is not None:
        metrics["cleaning"] = cleaning_stats.to_dict()

    artifact_prefix: str = state.get("artifact_prefix", "artifacts")
    artifact_contents: Dict[str, Dict[str, Any]] = dict(state.get("artifact_contents", {}))
    artifact_contents.update(_result_artifacts(cleaned, cleaning_stats, stats, charts))

    manifest_entries: List[Dict[str, Any]] = []
    for phase in PHASE_ORDER:
        if phase not in phases:
            continue
        manifest_entries.append(
            {
                "name": f"{phase}_json",
                "description": f"Serialized output for the {phase} phase.",
                "contentType": "application/json",
                "key": f"{artifact_prefix}/phases/{phase}.json",
            }
        )
    manifest_entries.extend(_manifest_entries_for_artifacts(artifact_contents, artifact_prefix))
    manifest_entries.append(
        {
            "name": "results_json",
            "description": "Consolidated pipeline results payload.",
            "contentType": "application/json",
            "key": f"{artifact_prefix}/results/results.json",
        }
    )
    manifest_entries.append(
        {
            "name": "results_manifest",
            "description": "Manifest describing every stored artifact.",
            "contentType": "application/json",
            "key": f"{artifact_prefix}/results/manifest.json",
        }
    )

    manifest = {
        "sessionId": state.get("session_id"),
        "basePath": artifact_prefix + "/",
        "artifacts": manifest_entries,
    }

    payload = {"status": "completed", "metrics": metrics, "manifest": manifest}
    update = _with_phase(
        state,
        "finalize",
        payload,
        manifest=manifest,
        artifact_contents=artifact_contents,
        final_summary=payload,
    )
    _emit_callback(state, "finalize", payload)
    return update
