# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""AWS Signature Version 4 request canonicalization and signing.

Builds the canonical request, string to sign and ``Authorization`` header
for path-style S3 requests.  No boto3/botocore dependency: the signature
must be byte-identical with what the storage server recomputes, so every
step is spelled out here.

A signing bug never raises locally.  It shows up as a 403
``SignatureDoesNotMatch`` from the server.
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime


ALGORITHM = "AWS4-HMAC-SHA256"

#: Service name bound into the credential scope.
S3_SERVICE = "s3"

#: Hex SHA-256 of the empty payload.
EMPTY_PAYLOAD_SHA256 = hashlib.sha256(b"").hexdigest()

_UNRESERVED = frozenset(
    b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~"
)


@dataclass(frozen=True)
class Credentials:
    """Credential pair plus the scope it signs for."""

    access_key: str
    secret_key: str = field(repr=False)
    region: str
    service: str = S3_SERVICE


# ---------------------------------------------------------------------------
# URI encoding (strict RFC 3986)
# ---------------------------------------------------------------------------


def uri_encode(value: str) -> str:
    """Percent-encode a value the way SigV4 expects.

    Only ``A-Z a-z 0-9 - _ . ~`` pass through.  Everything else, including
    ``/`` and the ``! ' ( ) *`` characters that generic URL encoders leave
    alone, becomes ``%XX`` with uppercase hex over the UTF-8 bytes.

    Args:
        value: String to encode.

    Returns:
        URI-encoded string.
    """
    return "".join(
        chr(byte) if byte in _UNRESERVED else f"%{byte:02X}"
        for byte in value.encode("utf-8")
    )


# ---------------------------------------------------------------------------
# Canonical request construction
# ---------------------------------------------------------------------------


def canonical_uri(path: str) -> str:
    """Build the canonical URI for a path-style request.

    Each ``/``-separated segment is encoded on its own, so separators
    survive and everything inside a segment is escaped.  S3 paths are
    neither normalized nor double-encoded.

    Args:
        path: Raw (unencoded) request path, e.g. ``/bucket/key``.

    Returns:
        Canonical URI, always starting with ``/``.
    """
    if not path.startswith("/"):
        path = "/" + path
    return "/".join(uri_encode(segment) for segment in path.split("/"))


def canonical_query_string(query: Mapping[str, str | None] | None) -> str:
    """Build the canonical query string.

    Parameters whose value is None are dropped entirely, not sent as
    empty.  The result is also what goes on the wire.

    Args:
        query: Parameter mapping, or None.

    Returns:
        Encoded ``name=value`` pairs sorted by name, joined with ``&``.
    """
    if not query:
        return ""

    encoded = sorted(
        (uri_encode(name), uri_encode(value))
        for name, value in query.items()
        if value is not None
    )
    return "&".join(f"{name}={value}" for name, value in encoded)


def normalize_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Lower-case header names and collapse whitespace in values.

    Later entries win when two names differ only by case.

    Args:
        headers: Raw header mapping.

    Returns:
        Normalized header mapping.
    """
    return {
        name.lower(): " ".join(str(value).split())
        for name, value in headers.items()
    }


def canonical_headers(headers: Mapping[str, str]) -> tuple[str, str]:
    """Build the canonical header block and signed header list.

    Args:
        headers: Headers to sign (normalized or not).

    Returns:
        Tuple of (block of ``name:value\\n`` lines sorted by name,
        ``;``-joined sorted header names).
    """
    normalized = sorted(normalize_headers(headers).items())
    block = "".join(f"{name}:{value}\n" for name, value in normalized)
    signed = ";".join(name for name, _ in normalized)
    return block, signed


def build_canonical_request(
    method: str,
    canonical_path: str,
    canonical_query: str,
    headers_block: str,
    signed_headers: str,
    payload_hash: str,
) -> str:
    """Join the canonical request parts.

    The header block already ends in a newline, so the join produces the
    blank line SigV4 requires between headers and the signed header list.

    Returns:
        Canonical request string.
    """
    return "\n".join(
        [
            method,
            canonical_path,
            canonical_query,
            headers_block,
            signed_headers,
            payload_hash,
        ]
    )


def payload_sha256(body: bytes | None) -> str:
    """Hex SHA-256 of the request payload (empty digest for no body)."""
    if not body:
        return EMPTY_PAYLOAD_SHA256
    return hashlib.sha256(body).hexdigest()


# ---------------------------------------------------------------------------
# SigV4 signing
# ---------------------------------------------------------------------------


def format_amz_date(now: datetime) -> tuple[str, str]:
    """Format a timestamp for ``x-amz-date`` and the credential scope.

    Args:
        now: Timezone-aware timestamp.

    Returns:
        Tuple of (``YYYYMMDDTHHMMSSZ``, ``YYYYMMDD``), both in UTC.

    Raises:
        ValueError: If *now* is naive.
    """
    if now.tzinfo is None:
        raise ValueError("Signing timestamp must be timezone-aware")
    utc = now.astimezone(UTC)
    return utc.strftime("%Y%m%dT%H%M%SZ"), utc.strftime("%Y%m%d")


def credential_scope(date_stamp: str, region: str, service: str) -> str:
    """Build ``date/region/service/aws4_request``."""
    return f"{date_stamp}/{region}/{service}/aws4_request"


def _hmac_sha256(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def derive_signing_key(
    secret_key: str, date_stamp: str, region: str, service: str
) -> bytes:
    """Derive the SigV4 signing key.

    Args:
        secret_key: Secret access key.
        date_stamp: Date string (YYYYMMDD).
        region: Region name.
        service: Service name.

    Returns:
        Derived signing key bytes.
    """
    k_date = _hmac_sha256(("AWS4" + secret_key).encode("utf-8"), date_stamp)
    k_region = _hmac_sha256(k_date, region)
    k_service = _hmac_sha256(k_region, service)
    return _hmac_sha256(k_service, "aws4_request")


def build_string_to_sign(
    amz_date: str, scope: str, canonical_request: str
) -> str:
    """Build the SigV4 string to sign.

    Args:
        amz_date: ``x-amz-date`` value.
        scope: Credential scope.
        canonical_request: The canonical request string.

    Returns:
        String to sign.
    """
    return "\n".join(
        [
            ALGORITHM,
            amz_date,
            scope,
            hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
        ]
    )


def sign_request(
    canonical_request: str,
    signed_headers: str,
    *,
    amz_date: str,
    date_stamp: str,
    credentials: Credentials,
) -> str:
    """Compute the ``Authorization`` header value for a canonical request.

    Args:
        canonical_request: Output of ``build_canonical_request``.
        signed_headers: ``;``-joined signed header names.
        amz_date: ``x-amz-date`` value used in the request.
        date_stamp: Date part of *amz_date*.
        credentials: Key pair, region and service.

    Returns:
        ``AWS4-HMAC-SHA256 Credential=..., SignedHeaders=..., Signature=...``
    """
    scope = credential_scope(
        date_stamp, credentials.region, credentials.service
    )
    string_to_sign = build_string_to_sign(amz_date, scope, canonical_request)
    signing_key = derive_signing_key(
        credentials.secret_key,
        date_stamp,
        credentials.region,
        credentials.service,
    )
    signature = hmac.new(
        signing_key, string_to_sign.encode("utf-8"), hashlib.sha256
    ).hexdigest()

    return ", ".join(
        [
            f"{ALGORITHM} Credential={credentials.access_key}/{scope}",
            f"SignedHeaders={signed_headers}",
            f"Signature={signature}",
        ]
    )
