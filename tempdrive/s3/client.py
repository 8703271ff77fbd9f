# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Signed HTTP client for an S3-compatible storage endpoint.

Each call canonicalizes and signs one request with SigV4 and sends it
through a ``urllib.request`` opener.  Exactly one HTTP request is made per
call: no retries, no redirects for writes, no timeout beyond the
transport default.
"""

from __future__ import annotations

import logging
import urllib.error
import urllib.request
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime

from tempdrive.config import StorageConfig
from tempdrive.s3.errors import (
    MissingCredentialsError,
    StorageConnectionError,
    StorageRequestError,
)
from tempdrive.s3.signing import (
    Credentials,
    build_canonical_request,
    canonical_headers,
    canonical_query_string,
    canonical_uri,
    format_amz_date,
    normalize_headers,
    payload_sha256,
    sign_request,
)


logger = logging.getLogger(__name__)

_METHODS = frozenset({"GET", "PUT", "HEAD", "DELETE"})


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class S3Response:
    """A successful (2xx) storage response.

    Attributes:
        status: HTTP status code.
        headers: Response headers with lower-cased names.
        body: Response body (empty for HEAD).
    """

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def text(self) -> str:
        """Decode the body as UTF-8."""
        return self.body.decode("utf-8", errors="replace")


class SignedClient:
    """Issues SigV4-signed requests against one storage endpoint."""

    def __init__(
        self,
        config: StorageConfig,
        *,
        opener: urllib.request.OpenerDirector | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Storage endpoint and credentials.
            opener: urllib opener used to send requests.  Defaults to
                ``urllib.request.build_opener()``.
            clock: Returns the signing timestamp.  Defaults to now (UTC).
        """
        self.config = config
        self._opener = opener or urllib.request.build_opener()
        self._clock = clock or _utc_now

    def request(
        self,
        method: str,
        path: str,
        *,
        body: bytes | None = None,
        query: Mapping[str, str | None] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> S3Response:
        """Sign and send one request.

        Args:
            method: ``GET``, ``PUT``, ``HEAD`` or ``DELETE``.
            path: Raw path, e.g. ``/bucket/key``.
            body: Request payload.
            query: Query parameters; None values are dropped.
            headers: Extra headers; they override the synthesized ones.

        Returns:
            The response, when its status is 2xx.

        Raises:
            MissingCredentialsError: If the access or secret key is empty.
            StorageRequestError: If the server answers with a non-2xx status.
            StorageConnectionError: If no response was received.
            ValueError: If *method* is not supported.
        """
        if method not in _METHODS:
            raise ValueError(f"Unsupported storage method: {method}")

        config = self.config
        if not config.access_key or not config.secret_key:
            raise MissingCredentialsError(
                "storage.access_key and storage.secret_key are required"
            )

        payload = body or b""
        payload_hash = payload_sha256(payload)
        amz_date, date_stamp = format_amz_date(self._clock())
        canonical_path = canonical_uri(path)
        canonical_query = canonical_query_string(query)

        merged = normalize_headers(
            {
                "host": config.host_header,
                "x-amz-content-sha256": payload_hash,
                "x-amz-date": amz_date,
                **(headers or {}),
            }
        )
        headers_block, signed_headers = canonical_headers(merged)
        canonical_request = build_canonical_request(
            method,
            canonical_path,
            canonical_query,
            headers_block,
            signed_headers,
            payload_hash,
        )
        authorization = sign_request(
            canonical_request,
            signed_headers,
            amz_date=amz_date,
            date_stamp=date_stamp,
            credentials=Credentials(
                access_key=config.access_key,
                secret_key=config.secret_key,
                region=config.region,
            ),
        )

        url = f"{config.origin}{canonical_path}"
        if canonical_query:
            url = f"{url}?{canonical_query}"

        req = urllib.request.Request(
            url,
            data=payload or None,
            headers={**merged, "Authorization": authorization},
            method=method,
        )
        return self._send(req, method, path)

    def _send(
        self, req: urllib.request.Request, method: str, path: str
    ) -> S3Response:
        """Dispatch a prepared request and translate failures."""
        try:
            with self._opener.open(req) as resp:
                status = resp.status
                response_headers = {
                    name.lower(): value for name, value in resp.headers.items()
                }
                data = resp.read() if method != "HEAD" else b""
        except urllib.error.HTTPError as e:
            reason = _error_reason(e)
            logger.debug("%s %s -> %d: %s", method, path, e.code, reason)
            raise StorageRequestError(
                e.code, reason, method=method, path=path
            ) from e
        except (urllib.error.URLError, OSError) as e:
            raise StorageConnectionError(
                f"{method} {path} failed: {e}"
            ) from e

        if not 200 <= status < 300:
            raise StorageRequestError(
                status, "S3 request failed", method=method, path=path
            )

        logger.debug("%s %s -> %d (%d bytes)", method, path, status, len(data))
        return S3Response(status=status, headers=response_headers, body=data)


def _error_reason(error: urllib.error.HTTPError) -> str:
    """Extract the server-provided reason text from an error response."""
    try:
        text = error.read().decode("utf-8", errors="replace").strip()
    except OSError:
        text = ""
    finally:
        error.close()
    return text or str(error.reason or "") or "S3 request failed"
