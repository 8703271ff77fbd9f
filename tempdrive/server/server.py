# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Document API HTTP server.

Provides a WSGI application exposing upload, list, download and extend
over JSON/multipart, served by werkzeug in a background thread.
"""

import logging
import threading
import time
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from werkzeug.wrappers.response import StartResponse

from werkzeug.exceptions import HTTPException, RequestEntityTooLarge
from werkzeug.routing import Map, Rule
from werkzeug.serving import make_server
from werkzeug.wrappers import Request, Response

from tempdrive.config import ServerConfig
from tempdrive.documents import (
    DocumentManager,
    DocumentNotFoundError,
    DocumentValidationError,
)
from tempdrive.s3.errors import StorageError
from tempdrive.server.handlers import RequestHandlers, message_response


logger = logging.getLogger(__name__)

_CORS_METHODS = "GET,HEAD,PUT,PATCH,POST,DELETE"


class DocumentServer:
    """WSGI server for the document API.

    Runs in a background thread.
    """

    def __init__(
        self,
        manager: DocumentManager,
        config: ServerConfig | None = None,
    ) -> None:
        """Initialize document server.

        Args:
            manager: Document lifecycle manager serving the requests.
            config: Bind address, upload limits, CORS and upload token.
        """
        self.manager = manager
        self.config = config or ServerConfig()
        self.host = self.config.host
        self.port = self.config.port
        self._server: Any = None
        self._thread: threading.Thread | None = None

        self._handlers = RequestHandlers(manager, self.config)

        self._url_map = Map(
            [
                Rule("/health", endpoint="health", methods=["GET"]),
                Rule(
                    "/api/documents",
                    endpoint="list_documents",
                    methods=["GET"],
                ),
                Rule(
                    "/api/documents",
                    endpoint="upload_document",
                    methods=["POST"],
                ),
                Rule(
                    "/api/documents/permanent",
                    endpoint="upload_permanent",
                    methods=["POST"],
                ),
                Rule(
                    "/api/documents/<doc_id>",
                    endpoint="download_document",
                    methods=["GET"],
                ),
                Rule(
                    "/api/documents/<doc_id>/extend",
                    endpoint="extend_document",
                    methods=["POST"],
                ),
            ]
        )

        self._endpoint_handlers = {
            "health": self._handlers.handle_health,
            "list_documents": self._handlers.handle_list_documents,
            "upload_document": self._handlers.handle_upload_document,
            "upload_permanent": self._handlers.handle_upload_permanent,
            "download_document": self._handlers.handle_download_document,
            "extend_document": self._handlers.handle_extend_document,
        }

    def start(self) -> None:
        """Start the server in a background thread."""
        self._server = make_server(
            self.host,
            self.port,
            self._wsgi_app,
            threaded=True,
        )
        self.port = self._server.server_port
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True,
            name="DocumentServer",
        )
        self._thread.start()
        logger.info(
            "Document server started at http://%s:%d/",
            self.host,
            self.port,
        )

    def stop(self) -> None:
        """Stop the server."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
            if self._thread is not None:
                self._thread.join(timeout=5)
            logger.info("Document server stopped")

    def _wsgi_app(
        self,
        environ: dict[str, Any],
        start_response: "StartResponse",
    ) -> Iterable[bytes]:
        """WSGI application entry point.

        Args:
            environ: WSGI environ dict.
            start_response: WSGI start_response callable.

        Returns:
            Response body iterable.
        """
        started = time.monotonic()
        request = Request(environ)
        request.max_content_length = self.config.max_upload_bytes

        response = self._dispatch(request)
        response.headers["Access-Control-Allow-Origin"] = (
            self.config.cors_origin
        )
        self._log_request(request, response, started)
        return response(environ, start_response)

    def _dispatch(self, request: Request) -> Response:
        """Route request to appropriate handler.

        Args:
            request: Incoming request.

        Returns:
            Response to send.
        """
        if request.method == "OPTIONS":
            return self._preflight(request)

        adapter = self._url_map.bind_to_environ(request.environ)
        try:
            endpoint, values = adapter.match()
            handler = self._endpoint_handlers[endpoint]
            return handler(request, **values)
        except DocumentNotFoundError as e:
            return message_response(str(e), 404)
        except DocumentValidationError as e:
            return message_response(str(e), 400)
        except RequestEntityTooLarge:
            return message_response(
                f"File exceeds the {self.config.max_upload_bytes} byte "
                f"upload limit.",
                413,
            )
        except HTTPException as e:
            return message_response(e.name, e.code or 500)
        except StorageError as e:
            logger.error("Storage error handling %s: %s", request.path, e)
            return message_response("Storage backend error.", 502)
        except Exception:
            logger.exception("Error handling request %s", request.path)
            return message_response("Internal Server Error", 500)

    def _preflight(self, request: Request) -> Response:
        """Answer a CORS preflight request."""
        response = Response(status=204)
        response.headers["Access-Control-Allow-Methods"] = _CORS_METHODS
        requested = request.headers.get("Access-Control-Request-Headers")
        if requested:
            response.headers["Access-Control-Allow-Headers"] = requested
        return response

    def _log_request(
        self, request: Request, response: Response, started: float
    ) -> None:
        """Log one handled request, leveled by response status."""
        status = response.status_code
        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(
            level,
            "%s %s -> %d (%d ms)",
            request.method,
            request.full_path.rstrip("?"),
            status,
            (time.monotonic() - started) * 1000,
        )
