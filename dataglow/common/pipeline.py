"""Helpers for persisting and summarizing DataGlow pipeline outputs."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - import only for static typing
    from dataglow.workers.graph.core.types import PipelineResult
else:  # pragma: no cover - at runtime we treat PipelineResult as ``Any``
    PipelineResult = Any  # type: ignore[misc,assignment]


ANALYSIS_VERSION = "2026.10"


def result_key_for(session_id: str) -> str:
    return f"artifacts/{session_id}/results/results.json"


def manifest_key_for(session_id: str) -> str:
    return f"artifacts/{session_id}/results/manifest.json"


def phase_key_for(session_id: str, phase: str) -> str:
    return f"artifacts/{session_id}/phases/{phase}.json"


def artifact_key_for(session_id: str, relative: str) -> str:
    return f"artifacts/{session_id}/{relative}"


def _json_bytes(data: Any) -> bytes:
    return json.dumps(data, indent=2, default=str).encode("utf-8")


def _bytes_for_artifact(spec: Mapping[str, Any]) -> bytes:
    kind = spec.get("kind")
    if kind == "json":
        return _json_bytes(spec.get("data"))
    if kind == "text":
        text = spec.get("text", "")
        if isinstance(text, bytes):
            return text
        return str(text).encode("utf-8")
    raise ValueError(f"Unsupported artifact kind: {kind}")


def _content_type_for_artifact(relative_key: str, spec: Mapping[str, Any]) -> str:
    value = spec.get("contentType")
    if isinstance(value, str) and value:
        return value
    kind = spec.get("kind")
    if kind == "json":
        return "application/json"
    if kind == "text":
        return "text/plain"
    if relative_key.endswith(".csv"):
        return "text/csv"
    return "application/octet-stream"


def persist_pipeline_outputs(
    session_id: str,
    bucket: str,
    result: "PipelineResult",
    *,
    s3_client,
) -> Dict[str, str]:
    """Upload phase payloads and generated artifacts to S3.

    Returns a mapping that includes the manifest key and phase artifact keys.
    """

    uploaded: Dict[str, str] = {}
    for phase, payload in result.phases.items():
        key = phase_key_for(session_id, phase)
        s3_client.put_object(
            Bucket=bucket,
            Key=key,
            Body=_json_bytes(payload),
            ContentType="application/json",
        )
        uploaded[f"phase:{phase}"] = key

    for relative_key, spec in result.artifact_contents.items():
        s3_client.put_object(
            Bucket=bucket,
            Key=artifact_key_for(session_id, relative_key),
            Body=_bytes_for_artifact(spec),
            ContentType=_content_type_for_artifact(relative_key, spec),
        )

    manifest_key = manifest_key_for(session_id)
    s3_client.put_object(
        Bucket=bucket,
        Key=manifest_key,
        Body=_json_bytes(result.manifest),
        ContentType="application/json",
    )
    uploaded["manifest"] = manifest_key
    return uploaded


def summarize_phase_payload(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    summary: Dict[str, Any] = {"status": payload.get("status")}
    for field in ("rows", "error", "message", "datasetCompleteness", "kinds"):
        if payload.get(field) is not None:
            summary[field] = payload[field]
    stats = payload.get("stats")
    if isinstance(stats, Mapping):
        summary["stats"] = dict(stats)
    return summary


def build_results_payload(
    session_id: str,
    result: "PipelineResult",
    *,
    file_name: Optional[str] = None,
    artifact_bucket: Optional[str] = None,
    analysis_version: str = ANALYSIS_VERSION,
) -> Dict[str, Any]:
    metrics = dict(result.metrics)
    summary = {
        "rows": metrics.get("rows"),
        "columns": metrics.get("columns"),
        "cleanedRows": metrics.get("cleanedRows"),
        "datasetCompleteness": metrics.get("datasetCompleteness"),
    }
    summary = {key: value for key, value in summary.items() if value is not None}

    links: Dict[str, str] = {}
    if artifact_bucket:
        links["resultsManifest"] = f"s3://{artifact_bucket}/{manifest_key_for(session_id)}"
        links["resultsJson"] = f"s3://{artifact_bucket}/{result_key_for(session_id)}"

    schema = [column.to_dict() for column in result.table.columns] if result.table is not None else []

    return {
        "sessionId": session_id,
        "fileName": file_name,
        "analysisVersion": analysis_version,
        "generatedAt": datetime.now(timezone.utc).isoformat(),
        "succeeded": result.succeeded,
        "summary": summary,
        "schema": schema,
        "links": links,
        "phases": result.phases,
        "metrics": metrics,
        "cleaningStats": result.cleaning_stats.to_dict() if result.cleaning_stats is not None else None,
        "stats": result.stats.to_dict() if result.stats is not None else None,
        "charts": {kind: spec.to_dict() for kind, spec in result.charts.items()},
        "artifactManifest": result.manifest,
        "phaseArtifactKeys": {phase: phase_key_for(session_id, phase) for phase in result.phases},
    }


__all__ = [
    "ANALYSIS_VERSION",
    "artifact_key_for",
    "build_results_payload",
    "manifest_key_for",
    "persist_pipeline_outputs",
    "phase_key_for",
    "result_key_for",
    "summarize_phase_payload",
]
