# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Storage error types.

Every backend failure carries a ``retriable`` classification so a caller
can layer retry/backoff on top of the client without inspecting status
codes itself.  The client never retries on its own.
"""

from __future__ import annotations

from tempdrive.config import ConfigError


#: Statuses worth retrying: timeouts, throttling, server-side failures.
_RETRIABLE_STATUSES = frozenset({408, 429})


class MissingCredentialsError(ConfigError):
    """Raised before any I/O when the access or secret key is empty."""


class StorageError(Exception):
    """Base exception for object storage failures."""

    @property
    def retriable(self) -> bool:
        """Whether repeating the same request may succeed."""
        return False


class StorageRequestError(StorageError):
    """The storage server answered with a non-2xx status.

    Attributes:
        status: HTTP status code.
        reason: Server-provided reason (response body, or reason phrase).
        method: HTTP method of the failed request.
        path: Request path of the failed request.
    """

    def __init__(
        self,
        status: int,
        reason: str,
        *,
        method: str = "",
        path: str = "",
    ) -> None:
        super().__init__(reason)
        self.status = status
        self.reason = reason
        self.method = method
        self.path = path

    def __str__(self) -> str:
        prefix = f"{self.method} {self.path} " if self.method else ""
        return f"{prefix}failed with status {self.status}: {self.reason}"

    @property
    def retriable(self) -> bool:
        return self.status >= 500 or self.status in _RETRIABLE_STATUSES

    @property
    def is_not_found(self) -> bool:
        """True for a 404 response."""
        return self.status == 404


class ObjectNotFoundError(StorageRequestError):
    """The requested object does not exist (404 on an object read).

    Attributes:
        key: Object key that was requested.
    """

    def __init__(
        self,
        key: str,
        reason: str = "Object not found",
        *,
        method: str = "",
        path: str = "",
    ) -> None:
        super().__init__(404, reason, method=method, path=path)
        self.key = key


class StorageConnectionError(StorageError):
    """The request never got an HTTP response (DNS, refused, reset)."""

    @property
    def retriable(self) -> bool:
        return True
