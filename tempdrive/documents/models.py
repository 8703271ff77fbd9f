# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Document records and their object metadata encoding.

A document is stored as a single object whose key is the document ID.
Everything else about it lives in ``x-amz-meta-*`` metadata:

==================  ====================================================
``original-name``   Original filename, percent-encoded (UTF-8)
``content-type``    Declared MIME type
``size``            Content length in bytes
``created-at``      Creation time, epoch milliseconds
``permanent``       ``"true"`` or ``"false"``
``expires-at``      Expiry time, epoch milliseconds (temporary only)
==================  ====================================================

Derived values such as the remaining lifetime are computed from a
record at read time and never stored.
"""

from __future__ import annotations

import math
import re
import urllib.parse
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from tempdrive.s3.signing import uri_encode
from tempdrive.s3.store import DEFAULT_CONTENT_TYPE, object_metadata


#: URL path under which documents are downloaded.
DOWNLOAD_PATH_PREFIX = "/api/documents/"

_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/?%*:|"<>]')


def sanitize_filename(name: str, doc_id: str) -> str:
    """Make a filename safe for a ``Content-Disposition`` header.

    Args:
        name: Original filename.
        doc_id: Document ID, used for the fallback name.

    Returns:
        The trimmed name with ``\\ / ? % * : | " < >`` replaced by ``_``,
        or ``document-<id>`` when nothing is left.
    """
    trimmed = name.strip()
    if not trimmed:
        return f"document-{doc_id}"
    return _UNSAFE_FILENAME_CHARS.sub("_", trimmed)


def _parse_int(metadata: Mapping[str, str], name: str) -> int:
    raw = metadata.get(name)
    if raw is None:
        raise ValueError(f"Missing {name} metadata")
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"Invalid {name} metadata: {raw!r}") from e


@dataclass(frozen=True)
class DocumentRecord:
    """Persistent state of one document.

    Attributes:
        id: Document ID (also the object key).
        original_name: Filename supplied at upload.
        content_type: Declared MIME type.
        size: Content length in bytes.
        created_at: Creation time, epoch milliseconds.
        permanent: Whether the document never expires.
        expires_at: Expiry time in epoch milliseconds, None when permanent.
    """

    id: str
    original_name: str
    content_type: str
    size: int
    created_at: int
    permanent: bool
    expires_at: int | None = None

    def __post_init__(self) -> None:
        if self.permanent and self.expires_at is not None:
            raise ValueError(f"Permanent document {self.id} has an expiry")
        if not self.permanent and self.expires_at is None:
            raise ValueError(f"Temporary document {self.id} has no expiry")

    def is_expired(self, now_ms: int) -> bool:
        """Whether the document has lapsed at *now_ms*."""
        return self.expires_at is not None and now_ms >= self.expires_at

    def with_expiry(self, expires_at: int) -> DocumentRecord:
        """Return a temporary copy of this record expiring at *expires_at*."""
        return replace(self, permanent=False, expires_at=expires_at)

    def to_metadata(self) -> dict[str, str]:
        """Encode the record as object metadata."""
        metadata = {
            "original-name": uri_encode(self.original_name),
            "content-type": self.content_type,
            "size": str(self.size),
            "created-at": str(self.created_at),
            "permanent": "true" if self.permanent else "false",
        }
        if self.expires_at is not None:
            metadata["expires-at"] = str(self.expires_at)
        return metadata

    @classmethod
    def from_headers(
        cls, doc_id: str, headers: Mapping[str, str]
    ) -> DocumentRecord:
        """Decode a record from object response headers.

        Args:
            doc_id: Object key.
            headers: HEAD or GET response headers.

        Returns:
            The decoded record.

        Raises:
            ValueError: If the object does not carry document metadata.
        """
        metadata = object_metadata(headers)

        flag = metadata.get("permanent")
        if flag not in ("true", "false"):
            raise ValueError(f"Object {doc_id} has no document metadata")
        permanent = flag == "true"

        size = (
            _parse_int(metadata, "size")
            if "size" in metadata
            else _parse_int(headers, "content-length")
        )

        return cls(
            id=doc_id,
            original_name=urllib.parse.unquote(
                metadata.get("original-name", "")
            ),
            content_type=metadata.get("content-type")
            or headers.get("content-type")
            or DEFAULT_CONTENT_TYPE,
            size=size,
            created_at=_parse_int(metadata, "created-at"),
            permanent=permanent,
            expires_at=None
            if permanent
            else _parse_int(metadata, "expires-at"),
        )


@dataclass(frozen=True)
class DocumentView:
    """Client-facing snapshot of a document at one instant."""

    record: DocumentRecord
    expires_in_seconds: int | None

    @classmethod
    def at(cls, record: DocumentRecord, now_ms: int) -> DocumentView:
        """Build the view of *record* as seen at *now_ms*."""
        if record.expires_at is None:
            return cls(record=record, expires_in_seconds=None)
        remaining = math.ceil((record.expires_at - now_ms) / 1000)
        return cls(record=record, expires_in_seconds=max(0, remaining))

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def expires_at(self) -> int | None:
        return self.record.expires_at

    @property
    def download_url(self) -> str:
        return f"{DOWNLOAD_PATH_PREFIX}{self.record.id}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON shape served over HTTP."""
        record = self.record
        return {
            "id": record.id,
            "originalName": record.original_name,
            "contentType": record.content_type,
            "size": record.size,
            "createdAt": record.created_at,
            "permanent": record.permanent,
            "expiresAt": record.expires_at,
            "expiresInSeconds": self.expires_in_seconds,
            "downloadUrl": self.download_url,
        }


@dataclass(frozen=True)
class DocumentDownload:
    """Document content ready to be served."""

    record: DocumentRecord
    body: bytes

    @property
    def content_type(self) -> str:
        return self.record.content_type or DEFAULT_CONTENT_TYPE

    @property
    def content_length(self) -> int:
        return len(self.body)

    @property
    def filename(self) -> str:
        return sanitize_filename(self.record.original_name, self.record.id)

    @property
    def content_disposition(self) -> str:
        """``Content-Disposition`` value marking the body as an attachment.

        Non-ASCII names get an ASCII ``filename`` plus an RFC 5987
        ``filename*`` carrying the UTF-8 name.
        """
        filename = self.filename
        if filename.isascii():
            return f'attachment; filename="{filename}"'
        fallback = filename.encode("ascii", "replace").decode()
        fallback = fallback.replace("?", "_")
        return (
            f'attachment; filename="{fallback}"; '
            f"filename*=UTF-8''{uri_encode(filename)}"
        )
