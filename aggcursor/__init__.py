# Copyright 2024-present MongoDB, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Asynchronous aggregation with batch-at-a-time cursors for MongoDB."""
from __future__ import annotations

from aggcursor._version import __version__, get_version_string, version, version_tuple
from aggcursor.cursor_shared import CursorState
from aggcursor.errors import (
    AggCursorError,
    CommandFailed,
    CursorClosed,
    CursorNotFound,
    ExecutionTimeout,
    InvalidArgument,
    InvalidOperation,
    ProtocolError,
    TransportError,
)
from aggcursor.options import AggregateOptions
from aggcursor.results import AggregateOutputResult

__all__ = [
    "__version__",
    "get_version_string",
    "version",
    "version_tuple",
    "AggCursorError",
    "AggregateOptions",
    "AggregateOutputResult",
    "CommandFailed",
    "CursorClosed",
    "CursorNotFound",
    "CursorState",
    "ExecutionTimeout",
    "InvalidArgument",
    "InvalidOperation",
    "ProtocolError",
    "TransportError",
]
