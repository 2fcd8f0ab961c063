import importlib
import io
from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError
import anyio
import httpx


def _client_error(code: str, operation: str):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class InMemoryS3:
    def __init__(self):
        self._buckets: dict[str, dict[str, dict]] = {}
        self.unavailable = False

    def _bucket(self, bucket: str) -> dict[str, dict]:
        return self._buckets.setdefault(bucket, {})

    def _check_available(self, operation: str):
        if self.unavailable:
            raise _client_error("ServiceUnavailable", operation)

    def put_object(self, Bucket: str, Key: str, Body, ContentType: str | None = None):
        self._check_available("PutObject")
        if isinstance(Body, str):
            body_bytes = Body.encode("utf-8")
        elif hasattr(Body, "read"):
            body_bytes = Body.read()
        else:
            body_bytes = Body
        self._bucket(Bucket)[Key] = {
            "Body": body_bytes,
            "LastModified": datetime.now(timezone.utc),
            "Size": len(body_bytes),
            "ContentType": ContentType,
        }
        return {"ResponseMetadata": {"HTTPStatusCode": 200}}

    def get_object(self, Bucket: str, Key: str):
        self._check_available("GetObject")
        bucket = self._bucket(Bucket)
        if Key not in bucket:
            raise _client_error("NoSuchKey", "GetObject")
        metadata = bucket[Key]
        return {
            "Body": io.BytesIO(metadata["Body"]),
            "ContentLength": metadata["Size"],
            "LastModified": metadata["LastModified"],
        }

    def delete_object(self, Bucket: str, Key: str):
        self._check_available("DeleteObject")
        self._bucket(Bucket).pop(Key, None)
        return {"ResponseMetadata": {"HTTPStatusCode": 204}}

    def keys(self, Bucket: str, Prefix: str = "") -> list[str]:
        return sorted(key for key in self._bucket(Bucket) if key.startswith(Prefix))


class FakeCloudWatch:
    def __init__(self):
        self.metric_calls = []

    def put_metric_data(self, Namespace, MetricData):
        self.metric_calls.append({"Namespace": Namespace, "MetricData": MetricData})
        return {"ResponseMetadata": {"HTTPStatusCode": 200}}


@pytest.fixture()
def api_app(monkeypatch):
    monkeypatch.setenv("BUCKET_NAME", "dataglow-staging")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.delenv("STAGING_PREFIX", raising=False)
    monkeypatch.delenv("TYPE_INFERENCE_MODE", raising=False)
    monkeypatch.delenv("TYPE_INFERENCE_SAMPLE_ROWS", raising=False)
    monkeypatch.setenv("MAX_UPLOAD_BYTES", "65536")

    from dataglow.api import app as app_module

    importlib.reload(app_module)

    fake_s3 = InMemoryS3()
    fake_cw = FakeCloudWatch()

    app_module.s3 = fake_s3
    app_module.cloudwatch = fake_cw

    transport = httpx.ASGITransport(app=app_module.app)
    async_client = httpx.AsyncClient(transport=transport, base_url="http://testserver")

    class SyncClient:
        def __init__(self, default_headers: dict[str, str]):
            self._default_headers = default_headers

        def request(self, method: str, url: str, **kwargs):
            headers = dict(self._default_headers)
            extra_headers = kwargs.pop("headers", None) or {}
            headers.update(extra_headers)
            return anyio.run(lambda: async_client.request(method, url, headers=headers, **kwargs))

        def get(self, url: str, **kwargs):
            return self.request("GET", url, **kwargs)

        def post(self, url: str, **kwargs):
            return self.request("POST", url, **kwargs)

        def delete(self, url: str, **kwargs):
            return self.request("DELETE", url, **kwargs)

    client = SyncClient({"x-request-id": "test-request"})

    try:
        yield {
            "client": client,
            "module": app_module,
            "s3": fake_s3,
            "cloudwatch": fake_cw,
        }
    finally:
        anyio.run(async_client.aclose)
