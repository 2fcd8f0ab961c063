from __future__ import annotations
import logging
from typing import Any, Callable, Dict, Mapping, MutableMapping, Optional, TypedDict

from .constants import PHASE_ORDER
from .types import ChartSpec, CleaningStats, DataStats, Table

logger = logging.getLogger(__name__)

PhaseCallback = Callable[[str, Mapping[str, Any], int, int], None]


class PipelineState(TypedDict, total=False):
    session_id: str
    source: Dict[str, Any]
    raw_text: Optional[str]
    inference_mode: str
    inference_sample_rows: int
    artifact_prefix: str
    on_phase: Optional[PhaseCallback]
    table: Optional[Table]
    cleaned_table: Optional[Table]
    cleaning_stats: Optional[CleaningStats]
    original_stats: Optional[DataStats]
    stats: Optional[DataStats]
    charts: Optional[Dict[str, ChartSpec]]
    phase_outputs: Dict[str, Dict[str, Any]]
    artifact_contents: Dict[str, Dict[str, Any]]
    manifest: Dict[str, Any]
    final_summary: Dict[str, Any]


def _with_phase(state: MutableMapping[str, Any], phase: str, payload: Dict[str, Any], **extra: Any) -> Dict[str, Any]:
    phases = dict(state.get("phase_outputs", {}))
    phases[phase] = payload
    update: Dict[str, Any] = {"phase_outputs": phases}
    update.update(extra)
    return update


def _emit_callback(state: Mapping[str, Any], phase: str, payload: Mapping[str, Any]) -> None:
    callback = state.get("on_phase")
    if not callable(callback):
        return
    index = PHASE_ORDER.index(phase)
    callback(phase, payload, index, len(PHASE_ORDER))


def _failed_phase(
    state: MutableMapping[str, Any],
    phase: str,
    exc: BaseException,
    *,
    expected: bool = False,
    **extra: Any,
) -> Dict[str, Any]:
    """Record a stage failure; the stage's own result stays unset.

    ``expected`` failures (malformed input) are logged without a traceback.
    """
    context = {"phase": phase, "session_id": state.get("session_id"), "error": str(exc)}
    if expected:
        logger.warning("pipeline phase rejected input", extra=context)
    else:
        logger.exception("pipeline phase failed", extra=context)
    payload = {"status": "failed", "error": str(exc) or type(exc).__name__}
    update = _with_phase(state, phase, payload, **extra)
    _emit_callback(state, phase, payload)
    return update


def _skipped_phase(state: MutableMapping[str, Any], phase: str, reason: str, **extra: Any) -> Dict[str, Any]:
    payload = {"status": "skipped", "message": reason}
    update = _with_phase(state, phase, payload, **extra)
    _emit_callback(state, phase, payload)
    return update
