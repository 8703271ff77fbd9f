# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Bucket and object operations on top of the signed client.

All objects live in one bucket addressed path-style
(``/<bucket>/<key>``).  User metadata travels as ``x-amz-meta-<name>``
headers; names are lower-cased on the way in because S3 servers return
them lower-cased anyway.
"""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from tempdrive.s3.client import SignedClient
from tempdrive.s3.errors import ObjectNotFoundError, StorageRequestError


logger = logging.getLogger(__name__)

#: Prefix of user-defined metadata headers.
METADATA_PREFIX = "x-amz-meta-"

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_KEY_PATTERN = re.compile(r"<Key>([^<]+)</Key>")
_TRUNCATED_PATTERN = re.compile(r"<IsTruncated>\s*true\s*</IsTruncated>")


def object_metadata(headers: Mapping[str, str]) -> dict[str, str]:
    """Extract user metadata from response headers.

    Args:
        headers: Response headers (any case).

    Returns:
        Metadata mapping with the ``x-amz-meta-`` prefix stripped.
    """
    metadata: dict[str, str] = {}
    for name, value in headers.items():
        lowered = name.lower()
        if lowered.startswith(METADATA_PREFIX):
            metadata[lowered[len(METADATA_PREFIX) :]] = value
    return metadata


def parse_list_keys(xml: str) -> list[str]:
    """Extract object keys from a ``ListObjectsV2`` response body."""
    return [html.unescape(key) for key in _KEY_PATTERN.findall(xml)]


@dataclass(frozen=True)
class StoredObject:
    """Object body plus the headers it was served with."""

    body: bytes
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def metadata(self) -> dict[str, str]:
        return object_metadata(self.headers)


class ObjectStore:
    """Object operations scoped to a single bucket."""

    def __init__(self, client: SignedClient, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    @property
    def bucket_path(self) -> str:
        return f"/{self.bucket}"

    def _object_path(self, key: str) -> str:
        return f"{self.bucket_path}/{key}"

    def ensure_bucket(self) -> bool:
        """Create the bucket unless it already exists.

        Safe to call on every start.

        Returns:
            True if the bucket was created, False if it already existed.

        Raises:
            StorageError: If the existence check fails with anything other
                than 404, or if creation fails.
        """
        try:
            self.client.request("HEAD", self.bucket_path)
            return False
        except StorageRequestError as e:
            if not e.is_not_found:
                raise

        self.client.request("PUT", self.bucket_path)
        logger.info("Created bucket %s", self.bucket)
        return True

    def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        """Write an object, replacing any existing object at *key*.

        Args:
            key: Object key.
            body: Object content.
            content_type: MIME type; defaults to ``application/octet-stream``.
            metadata: User metadata, sent as ``x-amz-meta-*`` headers.
        """
        headers = {"content-type": content_type or DEFAULT_CONTENT_TYPE}
        for name, value in (metadata or {}).items():
            headers[f"{METADATA_PREFIX}{name.lower()}"] = value

        self.client.request(
            "PUT", self._object_path(key), body=body, headers=headers
        )

    def head_object(self, key: str) -> dict[str, str]:
        """Fetch an object's headers without its body.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """
        path = self._object_path(key)
        try:
            response = self.client.request("HEAD", path)
        except StorageRequestError as e:
            if e.is_not_found:
                raise ObjectNotFoundError(
                    key, e.reason, method="HEAD", path=path
                ) from e
            raise
        return response.headers

    def get_object(self, key: str) -> StoredObject:
        """Fetch an object's body and headers.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """
        path = self._object_path(key)
        try:
            response = self.client.request("GET", path)
        except StorageRequestError as e:
            if e.is_not_found:
                raise ObjectNotFoundError(
                    key, e.reason, method="GET", path=path
                ) from e
            raise
        return StoredObject(body=response.body, headers=response.headers)

    def delete_object(self, key: str) -> None:
        """Delete an object.  Deleting a missing object is not an error."""
        try:
            self.client.request("DELETE", self._object_path(key))
        except StorageRequestError as e:
            if not e.is_not_found:
                raise
            logger.debug("Object %s already gone", key)

    def list_object_keys(self) -> list[str]:
        """List object keys in the bucket.

        Only the first page of results is read.  A truncated listing is
        logged so the gap is visible.

        Returns:
            Keys in the order the server returned them.
        """
        response = self.client.request(
            "GET", self.bucket_path, query={"list-type": "2"}
        )
        xml = response.text()
        keys = parse_list_keys(xml)
        if _TRUNCATED_PATTERN.search(xml):
            logger.warning(
                "Bucket listing for %s is truncated after %d keys; "
                "remaining objects are not visited",
                self.bucket,
                len(keys),
            )
        return keys
