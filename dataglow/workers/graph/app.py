from __future__ import annotations

import base64
import logging
from typing import Any, Dict, Mapping, Optional

from langgraph.graph import END, StateGraph

from .nodes import charts_node, clean_node, finalize_node, ingest_node, profile_node
from .core.constants import _DEFAULT_INFERENCE_SAMPLE_ROWS, INFERENCE_FIRST_ROW, PHASE_ORDER
from .core.state import PhaseCallback, PipelineState
from .core.types import PipelineResult
from .io.ingest import decode_upload, excel_to_delimited_text

logger = logging.getLogger(__name__)

_EXCEL_SUFFIXES = (".xls", ".xlsx")


def build_graph(checkpointer=None):
    g = StateGraph(PipelineState)
    g.add_node("ingest", ingest_node)
    g.add_node("clean", clean_node)
    g.add_node("profile", profile_node)
    g.add_node("charts", charts_node)
    g.add_node("finalize", finalize_node)

    g.set_entry_point(PHASE_ORDER[0])
    for current, following in zip(PHASE_ORDER, PHASE_ORDER[1:]):
        g.add_edge(current, following)
    g.add_edge(PHASE_ORDER[-1], END)
    return g.compile(checkpointer=checkpointer)


PIPELINE = build_graph()


def upload_to_text(body: bytes, file_name: Optional[str] = None) -> str:
    """Turn uploaded bytes into delimited text; workbooks are converted first."""
    if file_name and file_name.lower().endswith(_EXCEL_SUFFIXES):
        return excel_to_delimited_text(body)
    return decode_upload(body)


def run_pipeline(
    session_id: str,
    raw_text: Optional[str],
    *,
    source: Optional[Mapping[str, Any]] = None,
    artifact_prefix: Optional[str] = None,
    inference_mode: str = INFERENCE_FIRST_ROW,
    inference_sample_rows: int = _DEFAULT_INFERENCE_SAMPLE_ROWS,
    on_phase: Optional[PhaseCallback] = None,
) -> PipelineResult:
    initial_state: Dict[str, Any] = {
        "session_id": session_id,
        "source": dict(source or {}),
        "raw_text": raw_text,
        "inference_mode": inference_mode,
        "inference_sample_rows": inference_sample_rows,
        "artifact_prefix": artifact_prefix or f"artifacts/{session_id}",
        "phase_outputs": {},
        "artifact_contents": {},
    }
    if on_phase:
        initial_state["on_phase"] = on_phase

    final_state = PIPELINE.invoke(initial_state)

    phases = final_state.get("phase_outputs", {}) or {}
    final_summary = final_state.get("final_summary", {}) or {}
    failed = [phase for phase in PHASE_ORDER if phases.get(phase, {}).get("status") == "failed"]
    if failed:
        logger.warning("pipeline finished with failed phases", extra={"session_id": session_id, "failed": failed})

    return PipelineResult(
        phases=phases,
        metrics=final_summary.get("metrics", {}) or {},
        manifest=final_state.get("manifest", {}) or {},
        artifact_contents=final_state.get("artifact_contents", {}) or {},
        table=final_state.get("table"),
        cleaned_table=final_state.get("cleaned_table"),
        cleaning_stats=final_state.get("cleaning_stats"),
        stats=final_state.get("stats"),
        charts=final_state.get("charts") or {},
    )


def lambda_handler(event: Mapping[str, Any], _context: Any) -> Dict[str, Any]:
    session_id = event.get("sessionId")
    if not session_id:
        raise ValueError("sessionId is required")

    artifact_prefix = event.get("artifactPrefix") or f"artifacts/{session_id}"
    source = event.get("source") or {}
    body = event.get("body")
    if body is None:
        raise ValueError("body is required")
    if isinstance(body, str):
        body_bytes = base64.b64decode(body)
    elif isinstance(body, (bytes, bytearray)):
        body_bytes = bytes(body)
    else:
        raise TypeError("body must be bytes or base64-encoded string")

    raw_text = upload_to_text(body_bytes, source.get("fileName"))
    result = run_pipeline(
        session_id,
        raw_text,
        source=source,
        artifact_prefix=artifact_prefix,
        inference_mode=event.get("inferenceMode") or INFERENCE_FIRST_ROW,
    )
    return {
        "sessionId": session_id,
        "phases": result.phases,
        "metrics": result.metrics,
        "manifest": result.manifest,
    }
