# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""tempdrive: expiring document storage on S3-compatible object stores."""
