# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Document lifecycle management.

The object store has no per-object expiry, so expiry is enforced here in
two ways:

- Lazily: every read path (download, extend, list) checks the expiry
  recorded in the object's metadata and deletes lapsed documents it
  encounters.  An expired document is reported exactly like a missing
  one.
- Periodically: ``cleanup()`` sweeps the whole bucket and deletes every
  lapsed document.  At most one sweep runs at a time.

Deletes are idempotent, so a sweep racing a read on the same document is
harmless.  Nothing else is locked: a concurrent extend and sweep on one
document resolve as whichever write lands last.
"""

from __future__ import annotations

import logging
import math
import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from tempdrive.config import LifecycleConfig
from tempdrive.documents.errors import (
    DocumentNotFoundError,
    DocumentValidationError,
    PermanentDocumentError,
)
from tempdrive.documents.models import (
    DocumentDownload,
    DocumentRecord,
    DocumentView,
)
from tempdrive.s3.errors import ObjectNotFoundError, StorageError
from tempdrive.s3.store import DEFAULT_CONTENT_TYPE, ObjectStore


logger = logging.getLogger(__name__)

_DOT_SEGMENTS = frozenset({".", ".."})


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def _new_document_id() -> str:
    return str(uuid.uuid4())


def _list_order(view: DocumentView) -> tuple[int, int]:
    """Permanent first (newest first), then temporary by soonest expiry."""
    record = view.record
    if record.expires_at is None:
        return (0, -record.created_at)
    return (1, record.expires_at)


class DocumentManager:
    """Upload, download, extend, list and sweep documents in one bucket."""

    def __init__(
        self,
        store: ObjectStore,
        lifecycle: LifecycleConfig | None = None,
        *,
        clock: Callable[[], int] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            store: Bucket-scoped object store.
            lifecycle: Expiry policy.  Defaults to ``LifecycleConfig()``.
            clock: Returns the current time in epoch milliseconds.
            id_factory: Returns a fresh document ID.  Defaults to UUID4.
        """
        self.store = store
        self.lifecycle = lifecycle or LifecycleConfig()
        self._clock = clock or _epoch_ms
        self._id_factory = id_factory or _new_document_id
        self._cleanup_lock = threading.Lock()
        self._reaper = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="document-reaper"
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def upload(
        self,
        data: bytes,
        *,
        filename: str,
        content_type: str | None = None,
        permanent: bool = False,
    ) -> DocumentView:
        """Store a new document.

        Args:
            data: Document content.
            filename: Original filename.
            content_type: Declared MIME type.
            permanent: Store without expiry.

        Returns:
            View of the stored document.
        """
        now = self._clock()
        expires_at = (
            None
            if permanent
            else now + self.lifecycle.temporary_lifetime_seconds * 1000
        )
        record = DocumentRecord(
            id=self._id_factory(),
            original_name=filename,
            content_type=content_type or DEFAULT_CONTENT_TYPE,
            size=len(data),
            created_at=now,
            permanent=permanent,
            expires_at=expires_at,
        )
        self.store.put_object(
            record.id, data, record.content_type, record.to_metadata()
        )
        logger.info(
            "Stored %s document %s (%d bytes)",
            "permanent" if permanent else "temporary",
            record.id,
            record.size,
        )
        return DocumentView.at(record, now)

    def list_documents(self) -> list[DocumentView]:
        """List live documents.

        Expired documents are left out and deleted in the background.

        Returns:
            Permanent documents (newest first), then temporary documents
            (soonest expiry first).
        """
        now = self._clock()
        views = []
        for key in self.store.list_object_keys():
            record = self._read_record(key)
            if record is None:
                continue
            if record.is_expired(now):
                self._schedule_delete(key)
                continue
            views.append(DocumentView.at(record, now))

        views.sort(key=_list_order)
        return views

    def download(self, doc_id: str) -> DocumentDownload:
        """Fetch a live document's content.

        Raises:
            DocumentNotFoundError: If the document is missing or expired.
                An expired document is deleted first.
        """
        now = self._clock()
        record = self._load_record(doc_id)
        if record.is_expired(now):
            self._delete_quietly(doc_id)
            raise DocumentNotFoundError(doc_id)

        return DocumentDownload(record=record, body=self._load_body(doc_id))

    def extend(self, doc_id: str, minutes: object) -> DocumentView:
        """Push a temporary document's expiry to *minutes* from now.

        The object is rewritten in full with the same content, since
        metadata can only change through a fresh PUT.

        Args:
            doc_id: Document ID.
            minutes: New remaining lifetime in minutes.

        Returns:
            View of the updated document.

        Raises:
            DocumentValidationError: If *minutes* is not a positive finite
                number within the configured maximum.
            PermanentDocumentError: If the document is permanent.
            DocumentNotFoundError: If the document is missing or expired.
        """
        minutes = self._validate_minutes(minutes)

        now = self._clock()
        record = self._load_record(doc_id)
        if record.permanent:
            raise PermanentDocumentError(doc_id)
        if record.is_expired(now):
            self._delete_quietly(doc_id)
            raise DocumentNotFoundError(doc_id)

        body = self._load_body(doc_id)
        updated = record.with_expiry(now + int(minutes * 60_000))
        self.store.put_object(
            doc_id, body, updated.content_type, updated.to_metadata()
        )
        logger.info("Document %s now expires in %s minutes", doc_id, minutes)
        return DocumentView.at(updated, now)

    def cleanup(self) -> int | None:
        """Delete every expired document in the bucket.

        Only one sweep runs at a time; a call made while another sweep is
        in progress returns immediately.

        Returns:
            Number of documents removed, or None if a sweep was already
            running.

        Raises:
            StorageError: If the bucket cannot be listed.
        """
        if not self._cleanup_lock.acquire(blocking=False):
            logger.debug("Cleanup already in progress, skipping")
            return None
        try:
            return self._sweep()
        finally:
            self._cleanup_lock.release()

    def shutdown(self) -> None:
        """Wait for background deletions to finish."""
        self._reaper.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate_minutes(self, minutes: object) -> float:
        if isinstance(minutes, bool) or not isinstance(minutes, int | float):
            raise DocumentValidationError("Minutes must be a number.")
        # Huge ints do not fit in a float.
        if isinstance(minutes, float) and not math.isfinite(minutes):
            raise DocumentValidationError("Minutes must be a positive number.")
        if minutes <= 0:
            raise DocumentValidationError("Minutes must be a positive number.")
        limit = self.lifecycle.max_extension_minutes
        if minutes > limit:
            raise DocumentValidationError(
                f"Minutes must not exceed {limit}."
            )
        return minutes

    def _load_record(self, doc_id: str) -> DocumentRecord:
        """HEAD a document and decode its metadata.

        The dot segments ``.`` and ``..`` are never document IDs and are
        rejected without a storage request.

        Raises:
            DocumentNotFoundError: If the object is missing or is not a
                document.
        """
        if doc_id in _DOT_SEGMENTS:
            raise DocumentNotFoundError(doc_id)
        try:
            headers = self.store.head_object(doc_id)
        except ObjectNotFoundError as e:
            raise DocumentNotFoundError(doc_id) from e
        try:
            return DocumentRecord.from_headers(doc_id, headers)
        except ValueError as e:
            logger.debug("Ignoring object %s: %s", doc_id, e)
            raise DocumentNotFoundError(doc_id) from e

    def _read_record(self, key: str) -> DocumentRecord | None:
        """Like ``_load_record`` but returns None for missing objects."""
        try:
            return self._load_record(key)
        except DocumentNotFoundError:
            return None

    def _load_body(self, doc_id: str) -> bytes:
        try:
            return self.store.get_object(doc_id).body
        except ObjectNotFoundError as e:
            raise DocumentNotFoundError(doc_id) from e

    def _schedule_delete(self, key: str) -> None:
        try:
            self._reaper.submit(self._delete_quietly, key)
        except RuntimeError:
            # Reaper already shut down.
            self._delete_quietly(key)

    def _delete_quietly(self, key: str) -> bool:
        """Delete an expired document, logging instead of raising.

        Returns:
            True if the delete succeeded.
        """
        try:
            self.store.delete_object(key)
        except StorageError as e:
            logger.warning("Failed to delete expired document %s: %s", key, e)
            return False
        logger.info("Deleted expired document %s", key)
        return True

    def _sweep(self) -> int:
        now = self._clock()
        keys = self.store.list_object_keys()
        logger.debug("Cleanup started: %d objects", len(keys))

        removed = 0
        for key in keys:
            try:
                record = self._read_record(key)
            except StorageError as e:
                logger.warning("Cleanup could not inspect %s: %s", key, e)
                continue
            if record is None or not record.is_expired(now):
                continue
            if self._delete_quietly(key):
                removed += 1

        if removed:
            logger.info("Cleanup removed %d expired documents", removed)
        else:
            logger.debug("Cleanup finished: nothing expired")
        return removed
