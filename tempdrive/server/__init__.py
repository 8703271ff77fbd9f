# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""HTTP front end for the document service."""

from tempdrive.server.handlers import RequestHandlers
from tempdrive.server.server import DocumentServer


__all__ = [
    "DocumentServer",
    "RequestHandlers",
]
