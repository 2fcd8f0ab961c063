import pytest
from botocore.exceptions import ClientError

from dataglow.common.staging import (
    InMemoryDocumentStore,
    S3DocumentStore,
    clear_session,
    slot_key,
)

from .integration.utils.aws import FakeS3, client_error


class DeniedS3:
    def get_object(self, Bucket, Key):
        raise client_error("AccessDenied", "GetObject")


def test_slot_keys_are_scoped_by_session():
    assert slot_key("abc", "upload") == "staging/abc/upload"
    assert slot_key("abc", "cleaned", prefix="tmp") == "tmp/abc/cleaned"


def test_in_memory_store_get_set_clear():
    store = InMemoryDocumentStore()
    assert store.get("k") is None
    store.set("k", "v")
    assert store.get("k") == "v"
    store.clear("k")
    store.clear("k")
    assert store.get("k") is None


def test_s3_store_round_trips_text():
    fake = FakeS3()
    store = S3DocumentStore("bucket", s3_client=fake)

    assert store.get("staging/s/upload") is None
    store.set("staging/s/upload", "naïve,ü\n1,2\n")
    assert store.get("staging/s/upload") == "naïve,ü\n1,2\n"
    store.clear("staging/s/upload")
    assert store.get("staging/s/upload") is None


def test_s3_store_propagates_other_errors():
    with pytest.raises(ClientError):
        S3DocumentStore("bucket", s3_client=DeniedS3()).get("staging/s/upload")


def test_clear_session_removes_every_slot():
    store = InMemoryDocumentStore()
    for slot in ("upload", "upload_name", "cleaned"):
        store.set(slot_key("s", slot), "x")
    store.set(slot_key("other", "upload"), "y")

    clear_session(store, "s")

    assert store.keys() == ["staging/other/upload"]
