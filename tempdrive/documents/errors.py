# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Document lifecycle error types."""

#: Message shown for absent and expired documents alike.
NOT_FOUND_MESSAGE = "File not found or expired."


class DocumentError(Exception):
    """Base exception for document lifecycle errors."""


class DocumentNotFoundError(DocumentError):
    """The document does not exist or has expired.

    The two cases are deliberately indistinguishable to callers.
    """

    def __init__(self, doc_id: str) -> None:
        super().__init__(NOT_FOUND_MESSAGE)
        self.doc_id = doc_id


class DocumentValidationError(DocumentError):
    """A request was rejected before touching storage."""


class PermanentDocumentError(DocumentValidationError):
    """Extension was requested for a permanent document."""

    def __init__(self, doc_id: str) -> None:
        super().__init__("Permanent documents do not need extension.")
        self.doc_id = doc_id
