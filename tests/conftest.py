# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across multiple test packages.

The storage fixtures run the real ``SignedClient`` against ``FakeS3``, an
in-memory stand-in that plugs in where the urllib opener would go.  Every
request it sees is recorded, so tests can assert on the signed headers
as well as on the resulting bucket state.
"""

import email.message
import hashlib
import io
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from xml.sax.saxutils import escape

import pytest

from tempdrive.config import LifecycleConfig, StorageConfig
from tempdrive.documents import DocumentManager
from tempdrive.logging import SecretFilter
from tempdrive.s3 import ObjectStore, SignedClient


#: Fixed signing time used by the ``signed_client`` fixture.
SIGNING_TIME = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)

#: Start time of the ``clock`` fixture (epoch milliseconds).
CLOCK_START_MS = 1_767_322_800_000


@dataclass
class RecordedRequest:
    """A request seen by ``FakeS3``."""

    method: str
    url: str
    path: str
    query: str
    headers: dict[str, str]
    body: bytes


@dataclass
class FakeObject:
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)


class FakeResponse:
    """Minimal stand-in for the response returned by an opener."""

    def __init__(
        self, status: int, headers: dict[str, str], body: bytes = b""
    ) -> None:
        self.status = status
        self.headers = _message(headers)
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc: object) -> None:
        pass


def _message(headers: dict[str, str]) -> email.message.Message:
    message = email.message.Message()
    for name, value in headers.items():
        message[name] = value
    return message


class FakeS3:
    """In-memory S3 server speaking just enough of the path-style API."""

    def __init__(self) -> None:
        self.buckets: dict[str, dict[str, FakeObject]] = {}
        self.requests: list[RecordedRequest] = []
        self.list_truncated = False
        self.before_request: Callable[[RecordedRequest], None] | None = None
        self._failures: list[tuple[str, str, int, str, int | None]] = []

    # -- test helpers --------------------------------------------------

    def create_bucket(self, bucket: str) -> None:
        self.buckets.setdefault(bucket, {})

    def objects(self, bucket: str) -> dict[str, FakeObject]:
        return self.buckets[bucket]

    def fail(
        self,
        method: str,
        path: str,
        status: int,
        body: str = "",
        times: int | None = None,
    ) -> None:
        """Answer *method* on *path* with *status* (``times`` None = always)."""
        self._failures.append((method, path, status, body, times))

    def calls(self, method: str, path: str | None = None) -> list[str]:
        return [
            r.path
            for r in self.requests
            if r.method == method and (path is None or r.path == path)
        ]

    # -- opener interface ----------------------------------------------

    def open(
        self, req: urllib.request.Request, *args: object, **kwargs: object
    ) -> FakeResponse:
        parts = urllib.parse.urlsplit(req.full_url)
        recorded = RecordedRequest(
            method=req.get_method(),
            url=req.full_url,
            path=urllib.parse.unquote(parts.path),
            query=parts.query,
            headers={name.lower(): value for name, value in req.header_items()},
            body=bytes(req.data or b""),
        )
        self.requests.append(recorded)
        if self.before_request is not None:
            self.before_request(recorded)

        status, headers, body = self._handle(recorded)
        if status >= 300:
            raise urllib.error.HTTPError(
                req.full_url,
                status,
                "Not Found" if status == 404 else "Error",
                _message(headers),
                io.BytesIO(body),
            )
        return FakeResponse(status, headers, body)

    def _injected(self, request: RecordedRequest) -> tuple[int, str] | None:
        for index, (method, path, status, body, times) in enumerate(
            self._failures
        ):
            if method == request.method and path == request.path:
                if times is not None:
                    if times <= 1:
                        del self._failures[index]
                    else:
                        self._failures[index] = (
                            method, path, status, body, times - 1
                        )
                return status, body
        return None

    def _handle(
        self, request: RecordedRequest
    ) -> tuple[int, dict[str, str], bytes]:
        injected = self._injected(request)
        if injected is not None:
            status, body = injected
            return status, {}, body.encode()

        bucket, _, key = request.path.lstrip("/").partition("/")
        method = request.method

        if not key:
            return self._handle_bucket(method, bucket, request.query)

        objects = self.buckets.get(bucket)
        if objects is None:
            return 404, {}, b"<Error><Code>NoSuchBucket</Code></Error>"

        if method == "PUT":
            stored = {
                name: value
                for name, value in request.headers.items()
                if name.startswith("x-amz-meta-") or name == "content-type"
            }
            objects[key] = FakeObject(request.body, stored)
            return 200, {"etag": '"fake"'}, b""

        if method == "DELETE":
            objects.pop(key, None)
            return 204, {}, b""

        obj = objects.get(key)
        if obj is None:
            body = b"" if method == "HEAD" else b"<Error>NoSuchKey</Error>"
            return 404, {}, body

        headers = {**obj.headers, "content-length": str(len(obj.body))}
        return 200, headers, obj.body if method == "GET" else b""

    def _handle_bucket(
        self, method: str, bucket: str, query: str
    ) -> tuple[int, dict[str, str], bytes]:
        exists = bucket in self.buckets
        if method == "HEAD":
            return (200 if exists else 404), {}, b""
        if method == "PUT":
            if exists:
                return 409, {}, b"BucketAlreadyOwnedByYou"
            self.create_bucket(bucket)
            return 200, {}, b""
        if method == "GET" and "list-type=2" in query:
            if not exists:
                return 404, {}, b"<Error><Code>NoSuchBucket</Code></Error>"
            contents = "".join(
                f"<Contents><Key>{escape(key)}</Key></Contents>"
                for key in sorted(self.buckets[bucket])
            )
            truncated = "true" if self.list_truncated else "false"
            xml = (
                '<?xml version="1.0" encoding="UTF-8"?>'
                "<ListBucketResult>"
                f"<Name>{bucket}</Name>"
                f"<IsTruncated>{truncated}</IsTruncated>"
                f"{contents}"
                "</ListBucketResult>"
            )
            return 200, {"content-type": "application/xml"}, xml.encode()
        return 405, {}, b"MethodNotAllowed"


class ManualClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = CLOCK_START_MS) -> None:
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, seconds: float) -> None:
        self.now_ms += int(seconds * 1000)


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


@pytest.fixture(autouse=True)
def _clear_secret_filter() -> Iterator[None]:
    """Keep registered log secrets from leaking between tests."""
    yield
    SecretFilter.clear_secrets()


@pytest.fixture
def storage_config() -> StorageConfig:
    return StorageConfig(
        endpoint="minio.test",
        port=9000,
        access_key="AKIDTEST",
        secret_key="test-secret-key",
        bucket="drive-documents",
        region="us-east-1",
    )


@pytest.fixture
def fake_s3(storage_config: StorageConfig) -> FakeS3:
    """Fake storage server with the configured bucket already created."""
    fake = FakeS3()
    fake.create_bucket(storage_config.bucket)
    return fake


@pytest.fixture
def signed_client(
    storage_config: StorageConfig, fake_s3: FakeS3
) -> SignedClient:
    return SignedClient(
        storage_config, opener=fake_s3, clock=lambda: SIGNING_TIME
    )


@pytest.fixture
def store(
    signed_client: SignedClient, storage_config: StorageConfig
) -> ObjectStore:
    return ObjectStore(signed_client, storage_config.bucket)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def manager(
    store: ObjectStore, clock: ManualClock
) -> Iterator[DocumentManager]:
    ids = (f"doc-{n}" for n in range(1, 1000))
    manager = DocumentManager(
        store,
        LifecycleConfig(),
        clock=clock,
        id_factory=lambda: next(ids),
    )
    yield manager
    manager.shutdown()
