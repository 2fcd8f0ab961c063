# dataglow/api/app.py
from __future__ import annotations

import json
import logging
import os
import time
import uuid
from typing import Dict, Optional

import boto3
from botocore.exceptions import ClientError
from fastapi import FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from mangum import Mangum
from pydantic import BaseModel, Field

from dataglow.common.pipeline import (
    _json_bytes,
    build_results_payload,
    persist_pipeline_outputs,
    result_key_for,
)
from dataglow.common.staging import (
    CLEANED_SLOT,
    DEFAULT_STAGING_PREFIX,
    UPLOAD_NAME_SLOT,
    UPLOAD_SLOT,
    S3DocumentStore,
    clear_session,
    slot_key,
)
from dataglow.workers.graph.app import run_pipeline, upload_to_text
from dataglow.workers.graph.core.constants import (
    _CLEANED_CSV_NAME,
    _DEFAULT_INFERENCE_SAMPLE_ROWS,
    _MAX_CLEAN_PREVIEW_ROWS,
    _MAX_PREVIEW_ROWS,
    INFERENCE_FIRST_ROW,
    INFERENCE_MODES,
)
from dataglow.workers.graph.core.types import Table, charts_to_dict, column_schema
from dataglow.workers.graph.io.export import to_csv_bytes
from dataglow.workers.graph.io.ingest import MalformedInputError, parse_table, parse_table_strict
from dataglow.workers.graph.nodes.charts import compute_charts
from dataglow.workers.graph.nodes.clean import clean_table
from dataglow.workers.graph.nodes.profile import compute_stats

# ---- Env ----
BUCKET_NAME = os.environ["BUCKET_NAME"]          # staging + artifacts bucket
STAGING_PREFIX = os.environ.get("STAGING_PREFIX", DEFAULT_STAGING_PREFIX)
TYPE_INFERENCE_MODE = os.environ.get("TYPE_INFERENCE_MODE", INFERENCE_FIRST_ROW)
TYPE_INFERENCE_SAMPLE_ROWS = int(os.environ.get("TYPE_INFERENCE_SAMPLE_ROWS", str(_DEFAULT_INFERENCE_SAMPLE_ROWS)))
MAX_UPLOAD_BYTES = int(os.environ.get("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

if TYPE_INFERENCE_MODE not in INFERENCE_MODES:
    raise ValueError(f"TYPE_INFERENCE_MODE must be one of {', '.join(INFERENCE_MODES)}")

# ---- Logging & Observability ----
logger = logging.getLogger("dataglow.api")
if not logger.handlers:
    logging.basicConfig(level=logging.INFO)
logger.setLevel(logging.INFO)

METRICS_NAMESPACE = os.environ.get("METRICS_NAMESPACE", "DataGlow/API")

# ---- AWS ----
s3 = boto3.client("s3")
cloudwatch = boto3.client("cloudwatch")

# ---- App ----
app = FastAPI(title="DataGlow API")

# --- CORS for local dashboard ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
    allow_credentials=False,
)

SUPPORTED_UPLOAD_SUFFIXES = (".csv", ".xls", ".xlsx")
DASHBOARD_VIEWS = ("cleaned", "original")


# ---- Models ----
class ProcessOptions(BaseModel):
    """Optional per-request overrides for a full pipeline run."""
    inference_mode: str | None = None
    inference_sample_rows: int | None = Field(default=None, ge=1)


# ---- Helpers ----
def record_metric(name: str, value: float = 1, unit: str = "Count", dimensions: Optional[Dict[str, str]] | None = None) -> None:
    metric = {"MetricName": name, "Value": value, "Unit": unit}
    if dimensions:
        metric["Dimensions"] = [{"Name": key, "Value": val} for key, val in dimensions.items()]
    try:
        cloudwatch.put_metric_data(Namespace=METRICS_NAMESPACE, MetricData=[metric])
    except Exception as exc:  # pragma: no cover
        logger.debug("failed to emit metric", extra={"metric": name, "error": str(exc)})


def staging_store() -> S3DocumentStore:
    return S3DocumentStore(BUCKET_NAME, s3_client=s3)


def read_slot(session_id: str, slot: str) -> Optional[str]:
    try:
        return staging_store().get(slot_key(session_id, slot, prefix=STAGING_PREFIX))
    except ClientError as e:
        logger.exception("failed to read staging slot", extra={"session_id": session_id, "slot": slot})
        raise HTTPException(status_code=502, detail="Unable to read staged data") from e


def write_slot(session_id: str, slot: str, value: str) -> None:
    try:
        staging_store().set(slot_key(session_id, slot, prefix=STAGING_PREFIX), value)
    except ClientError as e:
        logger.exception("failed to write staging slot", extra={"session_id": session_id, "slot": slot})
        raise HTTPException(status_code=502, detail="Unable to stage data") from e


def clear_slot(session_id: str, slot: str) -> None:
    try:
        staging_store().clear(slot_key(session_id, slot, prefix=STAGING_PREFIX))
    except ClientError as e:
        logger.exception("failed to clear staging slot", extra={"session_id": session_id, "slot": slot})
        raise HTTPException(status_code=502, detail="Unable to clear staged data") from e


def parse_upload(raw_text: str) -> Table:
    return parse_table(raw_text, inference=TYPE_INFERENCE_MODE, sample_rows=TYPE_INFERENCE_SAMPLE_ROWS)


def load_original_table(session_id: str) -> Table:
    raw_text = read_slot(session_id, UPLOAD_SLOT)
    if raw_text is None:
        raise HTTPException(status_code=404, detail="No upload staged for this session")
    table = parse_upload(raw_text)
    if table.is_empty:
        raise HTTPException(status_code=409, detail="Staged upload can no longer be parsed")
    return table


def load_cleaned_table(session_id: str) -> Table:
    staged = read_slot(session_id, CLEANED_SLOT)
    if staged is None:
        raise HTTPException(status_code=404, detail="No cleaned data for this session")
    try:
        return Table.from_dict(json.loads(staged))
    except (ValueError, KeyError, TypeError) as exc:
        logger.exception("staged cleaned table is corrupt", extra={"session_id": session_id})
        raise HTTPException(status_code=409, detail="Staged cleaned data is corrupt") from exc


def _upload_suffix(file_name: str) -> Optional[str]:
    lowered = file_name.lower()
    for suffix in SUPPORTED_UPLOAD_SUFFIXES:
        if lowered.endswith(suffix):
            return suffix
    return None


# ---- Routes ----
@app.get("/health")
def health():
    return {"ok": True}


@app.post("/sessions")
def create_session():
    session_id = str(uuid.uuid4())
    logger.info("session created", extra={"session_id": session_id})
    return {"sessionId": session_id}


@app.post("/sessions/{session_id}/upload")
def upload_file(session_id: str, file: UploadFile = File(...)):
    file_name = file.filename or ""
    suffix = _upload_suffix(file_name)
    if suffix is None:
        record_metric("UploadRejected", dimensions={"Reason": "UnsupportedType"})
        raise HTTPException(status_code=400, detail="Please upload a CSV or Excel file")

    body = file.file.read()
    if len(body) > MAX_UPLOAD_BYTES:
        record_metric("UploadRejected", dimensions={"Reason": "TooLarge"})
        raise HTTPException(status_code=400, detail=f"File exceeds the {MAX_UPLOAD_BYTES} byte upload limit")

    try:
        raw_text = upload_to_text(body, file_name)
    except Exception as exc:
        logger.warning("failed to read workbook", extra={"session_id": session_id, "error": str(exc)})
        record_metric("UploadRejected", dimensions={"Reason": "Unreadable"})
        raise HTTPException(status_code=400, detail="Unable to read the uploaded workbook") from exc

    try:
        table = parse_table_strict(raw_text, inference=TYPE_INFERENCE_MODE, sample_rows=TYPE_INFERENCE_SAMPLE_ROWS)
    except MalformedInputError as exc:
        record_metric("UploadRejected", dimensions={"Reason": "Malformed"})
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    write_slot(session_id, UPLOAD_SLOT, raw_text)
    write_slot(session_id, UPLOAD_NAME_SLOT, file_name)
    clear_slot(session_id, CLEANED_SLOT)

    record_metric("UploadAccepted", dimensions={"FileType": suffix.lstrip(".")})
    logger.info("upload staged", extra={"session_id": session_id, "rows": len(table.rows)})
    return {
        "sessionId": session_id,
        "fileName": file_name,
        "rows": len(table.rows),
        "columns": column_schema(table.columns),
        "preview": table.preview(_MAX_PREVIEW_ROWS),
    }


@app.post("/sessions/{session_id}/clean")
def clean_session(session_id: str):
    table = load_original_table(session_id)
    result = clean_table(table)
    write_slot(session_id, CLEANED_SLOT, json.dumps(result.table.to_dict()))

    record_metric("TableCleaned")
    logger.info("table cleaned", extra={"session_id": session_id, **result.stats.to_dict()})
    return {
        "sessionId": session_id,
        "stats": result.stats.to_dict(),
        "columns": column_schema(result.table.columns),
        "originalPreview": table.preview(_MAX_CLEAN_PREVIEW_ROWS),
        "cleanedPreview": result.table.preview(_MAX_CLEAN_PREVIEW_ROWS),
    }


@app.get("/sessions/{session_id}/dashboard")
def get_dashboard(session_id: str, view: str = Query(default="cleaned", description="cleaned or original")):
    if view not in DASHBOARD_VIEWS:
        raise HTTPException(status_code=400, detail="view must be 'cleaned' or 'original'")

    table = load_cleaned_table(session_id) if view == "cleaned" else load_original_table(session_id)
    stats = compute_stats(table)
    charts = compute_charts(table)

    record_metric("DashboardGenerated", dimensions={"View": view})
    return {
        "sessionId": session_id,
        "view": view,
        "fileName": read_slot(session_id, UPLOAD_NAME_SLOT),
        "stats": stats.to_dict(),
        "charts": charts_to_dict(charts),
    }


@app.get("/sessions/{session_id}/download")
def download_cleaned(session_id: str):
    table = load_cleaned_table(session_id)
    return Response(
        content=to_csv_bytes(table),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{_CLEANED_CSV_NAME}"'},
    )


@app.get("/sessions/{session_id}/stages")
def get_stages(session_id: str):
    has_upload = read_slot(session_id, UPLOAD_SLOT) is not None
    has_cleaned = read_slot(session_id, CLEANED_SLOT) is not None
    return {
        "sessionId": session_id,
        "fileName": read_slot(session_id, UPLOAD_NAME_SLOT),
        "stages": {
            "upload": True,
            "clean": has_upload,
            "dashboard": has_cleaned,
            "download": has_cleaned,
        },
    }


@app.post("/sessions/{session_id}/process")
def process_session(session_id: str, body: ProcessOptions | None = None):
    options = body or ProcessOptions()
    inference_mode = options.inference_mode or TYPE_INFERENCE_MODE
    if inference_mode not in INFERENCE_MODES:
        raise HTTPException(status_code=400, detail=f"inference_mode must be one of {', '.join(INFERENCE_MODES)}")

    raw_text = read_slot(session_id, UPLOAD_SLOT)
    if raw_text is None:
        raise HTTPException(status_code=404, detail="No upload staged for this session")
    file_name = read_slot(session_id, UPLOAD_NAME_SLOT)

    result = run_pipeline(
        session_id,
        raw_text,
        source={"fileName": file_name},
        inference_mode=inference_mode,
        inference_sample_rows=options.inference_sample_rows or TYPE_INFERENCE_SAMPLE_ROWS,
    )
    if result.cleaned_table is not None:
        write_slot(session_id, CLEANED_SLOT, json.dumps(result.cleaned_table.to_dict()))

    payload = build_results_payload(session_id, result, file_name=file_name, artifact_bucket=BUCKET_NAME)
    try:
        persist_pipeline_outputs(session_id, BUCKET_NAME, result, s3_client=s3)
        s3.put_object(
            Bucket=BUCKET_NAME,
            Key=result_key_for(session_id),
            Body=_json_bytes(payload),
            ContentType="application/json",
        )
    except ClientError as e:
        logger.exception("failed to persist pipeline outputs", extra={"session_id": session_id})
        raise HTTPException(status_code=502, detail="Unable to persist pipeline outputs") from e

    record_metric("PipelineProcessed", dimensions={"Succeeded": str(result.succeeded).lower()})
    return payload


@app.delete("/sessions/{session_id}")
def delete_session(session_id: str):
    try:
        clear_session(staging_store(), session_id, prefix=STAGING_PREFIX)
    except ClientError as e:
        logger.exception("failed to clear session", extra={"session_id": session_id})
        raise HTTPException(status_code=502, detail="Unable to clear session") from e
    logger.info("session cleared", extra={"session_id": session_id})
    return {"sessionId": session_id, "cleared": True}


# ---- Middleware ----
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    try:
        response = await call_next(request)
        duration_ms = int((time.time() - start) * 1000)
        logger.info(
            "request completed",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "request_id": request_id,
            },
        )
        response.headers.setdefault("x-request-id", request_id)
        return response
    except Exception:
        duration_ms = int((time.time() - start) * 1000)
        logger.exception(
            "request failed",
            extra={
                "path": request.url.path,
                "method": request.method,
                "request_id": request_id,
                "duration_ms": duration_ms,
            },
        )
        raise


# Lambda entry point
handler = Mangum(app)
