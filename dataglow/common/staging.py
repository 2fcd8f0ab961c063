"""Key/value staging for a session's upload and cleaned table."""
from __future__ import annotations

from typing import Dict, Optional, Protocol

from botocore.exceptions import ClientError

UPLOAD_SLOT = "upload"
UPLOAD_NAME_SLOT = "upload_name"
CLEANED_SLOT = "cleaned"
SESSION_SLOTS = (UPLOAD_SLOT, UPLOAD_NAME_SLOT, CLEANED_SLOT)

DEFAULT_STAGING_PREFIX = "staging"

_MISSING_CODES = ("404", "NotFound", "NoSuchKey")


class DocumentStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def clear(self, key: str) -> None:
        ...


def slot_key(session_id: str, slot: str, *, prefix: str = DEFAULT_STAGING_PREFIX) -> str:
    return f"{prefix}/{session_id}/{slot}"


def clear_session(store: DocumentStore, session_id: str, *, prefix: str = DEFAULT_STAGING_PREFIX) -> None:
    for slot in SESSION_SLOTS:
        store.clear(slot_key(session_id, slot, prefix=prefix))


class InMemoryDocumentStore:
    def __init__(self) -> None:
        self._values: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def clear(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self):
        return sorted(self._values)


class S3DocumentStore:
    """Stores each slot as a UTF-8 text object in one bucket."""

    def __init__(self, bucket: str, *, s3_client) -> None:
        self.bucket = bucket
        self._s3 = s3_client

    def get(self, key: str) -> Optional[str]:
        try:
            obj = self._s3.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in _MISSING_CODES:
                return None
            raise
        return obj["Body"].read().decode("utf-8")

    def set(self, key: str, value: str) -> None:
        self._s3.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=value.encode("utf-8"),
            ContentType="text/plain; charset=utf-8",
        )

    def clear(self, key: str) -> None:
        self._s3.delete_object(Bucket=self.bucket, Key=key)


__all__ = [
    "CLEANED_SLOT",
    "DEFAULT_STAGING_PREFIX",
    "DocumentStore",
    "InMemoryDocumentStore",
    "S3DocumentStore",
    "SESSION_SLOTS",
    "UPLOAD_NAME_SLOT",
    "UPLOAD_SLOT",
    "clear_session",
    "slot_key",
]
