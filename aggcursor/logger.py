# Copyright 2023-present MongoDB, Inc.
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
from __future__ import annotations

import enum
import logging
import os
from typing import Any

from bson import UuidRepresentation, json_util
from bson.json_util import JSONOptions


class _CommandStatusMessage(str, enum.Enum):
    STARTED = "Command started"
    SUCCEEDED = "Command succeeded"
    FAILED = "Command failed"


class _CursorStatusMessage(str, enum.Enum):
    GET_MORE_RETRIED = "GetMore retried"
    AWAIT_RETRIED = "Empty batch within await time, getMore reissued"
    LATE_REPLY_DISCARDED = "Reply discarded, cursor closed while getMore was outstanding"
    CLOSED = "Cursor closed"
    KILL_FAILED = "Kill cursors failed"


_DEFAULT_DOCUMENT_LENGTH = 1000
_REDACTED_FAILURE_FIELDS = ["code", "codeName", "errmsg", "errorLabels"]
_DOCUMENT_NAMES = ["command", "reply", "failure"]
_JSON_OPTIONS = JSONOptions(uuid_representation=UuidRepresentation.STANDARD)
_COMMAND_LOGGER = logging.getLogger("aggcursor.command")
_CURSOR_LOGGER = logging.getLogger("aggcursor.cursor")


def _debug_log(logger: logging.Logger, **fields: Any) -> None:
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(LogMessage(**fields))


def _document_length() -> int:
    document_length = int(
        os.getenv("AGGCURSOR_LOG_MAX_DOCUMENT_LENGTH", _DEFAULT_DOCUMENT_LENGTH)
    )
    if document_length < 0:
        return _DEFAULT_DOCUMENT_LENGTH
    return document_length


class LogMessage:
    """A structured log record, rendered as JSON only when it is emitted."""

    __slots__ = ["_kwargs"]

    def __init__(self, **kwargs: Any):
        self._kwargs = kwargs

        if "durationMS" in self._kwargs:
            self._kwargs["durationMS"] = self._kwargs["durationMS"].total_seconds() * 1000

    def __str__(self) -> str:
        self._redact()
        return "%s" % (
            json_util.dumps(
                self._kwargs, json_options=_JSON_OPTIONS, default=lambda o: o.__repr__()
            )
        )

    def _redact(self) -> None:
        document_length = _document_length()
        is_server_side_error = self._kwargs.pop("isServerSideError", False)

        for doc_name in _DOCUMENT_NAMES:
            doc = self._kwargs.get(doc_name)
            if doc and not isinstance(doc, str):
                if doc_name == "failure" and is_server_side_error:
                    doc = {k: v for k, v in doc.items() if k in _REDACTED_FAILURE_FIELDS}
                doc = json_util.dumps(
                    doc,
                    json_options=_JSON_OPTIONS,
                    default=lambda o: o.__repr__(),
                )
                if len(doc) > document_length:
                    doc = doc[:document_length] + "..."
                self._kwargs[doc_name] = doc
