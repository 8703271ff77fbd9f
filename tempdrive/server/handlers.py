# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""HTTP request handlers for the document API.

Handlers translate HTTP requests into ``DocumentManager`` calls.  Domain
and storage exceptions propagate to the server, which maps them to
status codes in one place.
"""

import hmac
import json
import logging
from typing import Any

from werkzeug.wrappers import Request, Response

from tempdrive.config import ServerConfig
from tempdrive.documents import DocumentManager


logger = logging.getLogger(__name__)


def json_response(payload: Any, status: int = 200) -> Response:
    """Build a JSON response."""
    return Response(
        json.dumps(payload),
        status=status,
        content_type="application/json",
    )


def message_response(message: str, status: int) -> Response:
    """Build a ``{"message": ...}`` error response."""
    return json_response({"message": message}, status=status)


def _bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return ""
    return header[len("Bearer ") :].strip()


class RequestHandlers:
    """Container for HTTP request handlers.

    Encapsulates the handler logic and the dependencies needed to serve
    document API requests.
    """

    def __init__(self, manager: DocumentManager, config: ServerConfig) -> None:
        """Initialize request handlers.

        Args:
            manager: Document lifecycle manager.
            config: Server settings (upload token).
        """
        self.manager = manager
        self.config = config

    def handle_health(self, request: Request) -> Response:
        """Handle health check endpoint."""
        return json_response({"status": "ok"})

    def handle_list_documents(self, request: Request) -> Response:
        """Handle document listing.

        Returns:
            JSON ``{"items": [...]}`` in list order.
        """
        views = self.manager.list_documents()
        return json_response({"items": [view.to_dict() for view in views]})

    def handle_upload_document(self, request: Request) -> Response:
        """Handle temporary document upload (multipart field ``file``)."""
        return self._upload(request, permanent=False)

    def handle_upload_permanent(self, request: Request) -> Response:
        """Handle permanent document upload.

        Requires ``Authorization: Bearer <token>`` matching the configured
        upload token.
        """
        configured = self.config.upload_auth_token
        if not configured:
            return message_response(
                "UPLOAD_AUTH_TOKEN is not configured on server.", 500
            )

        token = _bearer_token(request)
        if not token or not hmac.compare_digest(
            token.encode("utf-8"), configured.encode("utf-8")
        ):
            logger.warning(
                "Rejected permanent upload from %s: bad token",
                request.remote_addr,
            )
            return message_response("Unauthorized upload token.", 401)

        return self._upload(request, permanent=True)

    def handle_download_document(
        self, request: Request, doc_id: str
    ) -> Response:
        """Handle document download.

        Args:
            request: Incoming request.
            doc_id: Document ID from the URL.

        Returns:
            The document bytes as an attachment.
        """
        download = self.manager.download(doc_id)
        return Response(
            download.body,
            status=200,
            content_type=download.content_type,
            headers={"Content-Disposition": download.content_disposition},
        )

    def handle_extend_document(
        self, request: Request, doc_id: str
    ) -> Response:
        """Handle expiry extension (JSON body ``{"minutes": n}``).

        Args:
            request: Incoming request.
            doc_id: Document ID from the URL.

        Returns:
            JSON with the new ``expiresAt`` and ``expiresInSeconds``.
        """
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return message_response("Request body must be a JSON object.", 400)

        view = self.manager.extend(doc_id, body.get("minutes"))
        return json_response(
            {
                "id": view.id,
                "expiresAt": view.expires_at,
                "expiresInSeconds": view.expires_in_seconds,
            }
        )

    def _upload(self, request: Request, *, permanent: bool) -> Response:
        upload = request.files.get("file")
        if upload is None:
            return message_response("File is required.", 400)

        view = self.manager.upload(
            upload.read(),
            filename=upload.filename or "",
            content_type=upload.content_type or None,
            permanent=permanent,
        )
        return json_response(view.to_dict(), status=201)
