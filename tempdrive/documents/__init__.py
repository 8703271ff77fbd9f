# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Document lifecycle subsystem.

Provides expiring and permanent document storage on top of the object
store:
- Metadata encoding and derived views (DocumentRecord, DocumentView)
- Upload, download, extend, list and the expiry sweep (DocumentManager)
- Lifecycle error types
"""

from tempdrive.documents.errors import (
    NOT_FOUND_MESSAGE,
    DocumentError,
    DocumentNotFoundError,
    DocumentValidationError,
    PermanentDocumentError,
)
from tempdrive.documents.manager import DocumentManager
from tempdrive.documents.models import (
    DocumentDownload,
    DocumentRecord,
    DocumentView,
    sanitize_filename,
)


__all__ = [
    "NOT_FOUND_MESSAGE",
    "DocumentDownload",
    "DocumentError",
    "DocumentManager",
    "DocumentNotFoundError",
    "DocumentRecord",
    "DocumentValidationError",
    "DocumentView",
    "PermanentDocumentError",
    "sanitize_filename",
]
