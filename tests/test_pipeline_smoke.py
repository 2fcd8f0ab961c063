# tests/test_pipeline_smoke.py
import base64
import json

import pytest

from dataglow.common.pipeline import build_results_payload, persist_pipeline_outputs
from dataglow.workers.graph.app import lambda_handler, run_pipeline
from dataglow.workers.graph.nodes import clean as clean_module


CSV_SMALL = (
    "name,age,signup_date\n"
    "Alice,30,2023-01-05\n"
    "Bob,,2023-01-06\n"
    "Alice,30,2023-01-05\n"
)

PHASES_EXPECTED = [
    "ingest",
    "clean",
    "profile",
    "charts",
    "finalize",
]


class RecordingS3:
    def __init__(self):
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType=None):
        self.objects[Key] = {"Bucket": Bucket, "Body": Body, "ContentType": ContentType}


def test_pipeline_runs_every_phase_in_order():
    res = run_pipeline("session-1", CSV_SMALL, source={"fileName": "signups.csv"})

    assert list(res.phases.keys()) == PHASES_EXPECTED
    assert all(payload["status"] == "completed" for payload in res.phases.values())
    assert res.succeeded

    assert res.phases["ingest"]["fileName"] == "signups.csv"
    assert res.phases["ingest"]["rows"] == 3
    assert res.phases["clean"]["stats"]["duplicatesRemoved"] == 1
    assert res.phases["profile"]["original"]["totalRows"] == 3
    assert res.phases["profile"]["cleaned"]["totalRows"] == 2
    assert res.phases["profile"]["datasetCompleteness"] == pytest.approx(5 / 6)
    assert res.phases["charts"]["kinds"] == ["barChart", "lineChart", "pieChart"]

    m = res.metrics
    assert (m["rows"], m["columns"], m["cleanedRows"]) == (3, 3, 2)
    assert m["failedPhases"] == []

    assert res.cleaning_stats.dates_standardized == 2
    assert res.stats.missing_values == 1
    assert len(res.cleaned_table.rows) == 2
    assert set(res.charts) == {"barChart", "lineChart", "pieChart"}


def test_pipeline_artifacts_and_manifest():
    res = run_pipeline("session-2", CSV_SMALL)

    for k in ["sessionId", "basePath", "artifacts"]:
        assert k in res.manifest
    assert res.manifest["basePath"] == "artifacts/session-2/"

    ac = res.artifact_contents
    assert ac["results/cleaned_data.csv"]["text"] == "name,age,signup_date\nAlice,30,2023-01-05\nBob,,2023-01-06\n"
    assert ac["results/data_stats.json"]["data"]["totalRows"] == 2
    assert set(ac["results/charts.json"]["data"]) == {"barChart", "lineChart", "pieChart"}

    assert ac["results/cleaning_stats.json"]["data"]["cleanedRows"] == 2
    assert sorted(ac) == [
        "results/charts.json",
        "results/cleaned_data.csv",
        "results/cleaning_stats.json",
        "results/data_stats.json",
    ]

    keys = {entry["key"] for entry in res.manifest["artifacts"]}
    assert "artifacts/session-2/phases/ingest.json" in keys
    assert "artifacts/session-2/results/cleaned_data.csv" in keys
    assert "artifacts/session-2/results/results.json" in keys


def test_phase_callback_sees_every_phase():
    seen = []

    def _on_phase(phase, payload, index, total):
        seen.append((phase, payload["status"], index, total))

    run_pipeline("session-3", CSV_SMALL, on_phase=_on_phase)

    assert seen == [(phase, "completed", index, 5) for index, phase in enumerate(PHASES_EXPECTED)]


def test_malformed_input_fails_ingest_and_skips_the_rest():
    res = run_pipeline("session-4", "only,a,header\n")

    assert res.phases["ingest"]["status"] == "failed"
    assert res.phases["ingest"]["error"] == "File appears to be empty or invalid"
    for phase in ("clean", "profile", "charts"):
        assert res.phases[phase]["status"] == "skipped"
    assert res.phases["finalize"]["status"] == "completed"
    assert not res.succeeded
    assert res.cleaned_table is None
    assert res.metrics["failedPhases"] == ["ingest"]
    assert "results/cleaned_data.csv" not in res.artifact_contents


def test_unexpected_stage_error_is_recorded(monkeypatch):
    def _boom(table):
        raise RuntimeError("cleaner exploded")

    monkeypatch.setattr(clean_module, "clean_table", _boom)

    res = run_pipeline("session-5", CSV_SMALL)

    assert res.phases["clean"] == {"status": "failed", "error": "cleaner exploded"}
    assert res.phases["profile"]["status"] == "skipped"
    assert res.phases["charts"]["status"] == "skipped"
    assert res.cleaning_stats is None


def test_majority_inference_mode_is_passed_through():
    text = "score\nn/a\n10\n20\n"
    assert run_pipeline("s", text).phases["ingest"]["columns"] == [{"name": "score", "type": "string"}]
    res = run_pipeline("s", text, inference_mode="majority")
    assert res.phases["ingest"]["columns"] == [{"name": "score", "type": "number"}]


def test_lambda_handler_decodes_base64_body():
    body = base64.b64encode(CSV_SMALL.encode("utf-8")).decode("ascii")
    response = lambda_handler({"sessionId": "lambda-1", "body": body, "source": {"fileName": "x.csv"}}, None)

    assert response["sessionId"] == "lambda-1"
    assert list(response["phases"]) == PHASES_EXPECTED
    assert response["metrics"]["cleanedRows"] == 2


@pytest.mark.parametrize("event", [{"body": "YQ=="}, {"sessionId": "x"}])
def test_lambda_handler_validates_event(event):
    with pytest.raises(ValueError):
        lambda_handler(event, None)


def test_results_payload_and_persistence():
    res = run_pipeline("session-6", CSV_SMALL)
    s3 = RecordingS3()

    uploaded = persist_pipeline_outputs("session-6", "bucket", res, s3_client=s3)
    payload = build_results_payload("session-6", res, file_name="signups.csv", artifact_bucket="bucket")

    assert uploaded["manifest"] == "artifacts/session-6/results/manifest.json"
    assert uploaded["phase:finalize"] == "artifacts/session-6/phases/finalize.json"
    assert s3.objects["artifacts/session-6/results/cleaned_data.csv"]["ContentType"] == "text/csv"
    assert s3.objects["artifacts/session-6/results/data_stats.json"]["ContentType"] == "application/json"
    assert json.loads(s3.objects["artifacts/session-6/phases/clean.json"]["Body"])["stats"]["cleanedRows"] == 2
    assert json.loads(s3.objects["artifacts/session-6/results/charts.json"]["Body"])["pieChart"]["xKey"] == "name"

    assert payload["summary"] == {"rows": 3, "columns": 3, "cleanedRows": 2, "datasetCompleteness": pytest.approx(5 / 6)}
    assert payload["links"]["resultsJson"] == "s3://bucket/artifacts/session-6/results/results.json"
    assert payload["schema"][2] == {"name": "signup_date", "type": "date"}
    assert payload["cleaningStats"]["datesStandardized"] == 2
    json.dumps(payload)
