# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""S3-compatible object storage access.

Provides SDK-free storage access for the document service:
- SigV4 canonicalization and signing (signing)
- Signed HTTP client over urllib (SignedClient)
- Bucket-scoped object operations (ObjectStore)
- Storage error types with retriable classification
"""

from tempdrive.s3.client import S3Response, SignedClient
from tempdrive.s3.errors import (
    MissingCredentialsError,
    ObjectNotFoundError,
    StorageConnectionError,
    StorageError,
    StorageRequestError,
)
from tempdrive.s3.store import ObjectStore, StoredObject


__all__ = [
    "MissingCredentialsError",
    "ObjectNotFoundError",
    "ObjectStore",
    "S3Response",
    "SignedClient",
    "StorageConnectionError",
    "StorageError",
    "StorageRequestError",
    "StoredObject",
]
