import json
import logging
import os
from typing import Any, Dict, Mapping, Optional
from urllib.parse import unquote_plus

import boto3
from botocore.exceptions import ClientError

from dataglow.common.pipeline import (
    _json_bytes,
    build_results_payload,
    persist_pipeline_outputs,
    result_key_for,
    summarize_phase_payload,
)
from dataglow.common.staging import (
    CLEANED_SLOT,
    DEFAULT_STAGING_PREFIX,
    UPLOAD_NAME_SLOT,
    UPLOAD_SLOT,
    S3DocumentStore,
    slot_key,
)
from dataglow.workers.graph.app import run_pipeline
from dataglow.workers.graph.core.constants import _DEFAULT_INFERENCE_SAMPLE_ROWS, INFERENCE_FIRST_ROW

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

s3 = boto3.client("s3")

BUCKET_NAME = os.environ["BUCKET_NAME"]
STAGING_PREFIX = os.environ.get("STAGING_PREFIX", DEFAULT_STAGING_PREFIX)
TYPE_INFERENCE_MODE = os.environ.get("TYPE_INFERENCE_MODE", INFERENCE_FIRST_ROW)
TYPE_INFERENCE_SAMPLE_ROWS = int(os.environ.get("TYPE_INFERENCE_SAMPLE_ROWS", str(_DEFAULT_INFERENCE_SAMPLE_ROWS)))


def _session_from_upload_key(key: str) -> Optional[str]:
    """``staging/<session>/upload`` -> ``<session>``; other keys are ignored."""
    parts = unquote_plus(key).split("/")
    if len(parts) < 3 or parts[-1] != UPLOAD_SLOT:
        return None
    if "/".join(parts[:-2]) != STAGING_PREFIX:
        return None
    return parts[-2]


def session_ids_for(event: Mapping[str, Any]) -> list[str]:
    session_id = event.get("sessionId")
    if session_id:
        return [session_id]

    sessions = []
    for record in event.get("Records") or []:
        key = ((record.get("s3") or {}).get("object") or {}).get("key")
        if not key:
            continue
        found = _session_from_upload_key(key)
        if found:
            sessions.append(found)
    return sessions


def _phase_logger(session_id: str):
    def _callback(phase: str, payload: Mapping[str, Any], index: int, total: int) -> None:
        logger.info(
            "phase finished",
            extra={
                "session_id": session_id,
                "phase": phase,
                "progress": int(((index + 1) / total) * 100),
                "summary": summarize_phase_payload(payload),
            },
        )

    return _callback


def process_session(session_id: str) -> Dict[str, Any]:
    store = S3DocumentStore(BUCKET_NAME, s3_client=s3)
    raw_text = store.get(slot_key(session_id, UPLOAD_SLOT, prefix=STAGING_PREFIX))
    if raw_text is None:
        raise ValueError(f"no upload staged for session {session_id}")
    file_name = store.get(slot_key(session_id, UPLOAD_NAME_SLOT, prefix=STAGING_PREFIX))

    logger.info("processing session", extra={"session_id": session_id, "file_name": file_name})
    result = run_pipeline(
        session_id,
        raw_text,
        source={"fileName": file_name},
        inference_mode=TYPE_INFERENCE_MODE,
        inference_sample_rows=TYPE_INFERENCE_SAMPLE_ROWS,
        on_phase=_phase_logger(session_id),
    )

    if result.cleaned_table is not None:
        store.set(slot_key(session_id, CLEANED_SLOT, prefix=STAGING_PREFIX), json.dumps(result.cleaned_table.to_dict()))

    artifact_keys = persist_pipeline_outputs(session_id, BUCKET_NAME, result, s3_client=s3)
    results_key = result_key_for(session_id)
    payload = build_results_payload(session_id, result, file_name=file_name, artifact_bucket=BUCKET_NAME)
    s3.put_object(Bucket=BUCKET_NAME, Key=results_key, Body=_json_bytes(payload), ContentType="application/json")

    return {
        "ok": result.succeeded,
        "sessionId": session_id,
        "resultKey": results_key,
        "manifestKey": artifact_keys.get("manifest"),
    }


def main(event, _ctx):
    sessions = session_ids_for(event)
    if not sessions:
        raise ValueError("sessionId or an S3 upload record is required")

    responses = []
    for session_id in sessions:
        try:
            responses.append(process_session(session_id))
        except ClientError as e:
            err_txt = f"{type(e).__name__}: {e}"
            logger.exception("processing failed", extra={"session_id": session_id})
            try:
                s3.put_object(
                    Bucket=BUCKET_NAME,
                    Key=result_key_for(session_id).replace("results.json", "error.json"),
                    Body=_json_bytes({"sessionId": session_id, "error": err_txt}),
                    ContentType="application/json",
                )
            except ClientError:
                logger.warning("failed to write error artifact", extra={"session_id": session_id})
            raise

    if "sessionId" in event:
        return responses[0]
    return {"ok": all(item["ok"] for item in responses), "sessions": responses}
