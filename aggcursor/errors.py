# Copyright 2009-present MongoDB, Inc.
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

"""Exceptions raised by aggcursor."""
from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional


class AggCursorError(Exception):
    """Base class for all aggcursor exceptions."""

    def __init__(self, message: str = "", error_labels: Optional[Iterable[str]] = None) -> None:
        super().__init__(message)
        self._message = message
        self._error_labels = set(error_labels or [])

    def has_error_label(self, label: str) -> bool:
        """Return True if this error contains the given label."""
        return label in self._error_labels

    def _add_error_label(self, label: str) -> None:
        """Add the given label to this error."""
        self._error_labels.add(label)

    @property
    def timeout(self) -> bool:
        """True if this error was caused by a timeout."""
        return False


class InvalidArgument(AggCursorError):
    """Raised when a request is malformed, before any network activity.

    Never retried.
    """


class InvalidOperation(AggCursorError):
    """Raised when a client attempts an operation that is not valid for the
    request, e.g. asking for a cursor from a pipeline that writes to a
    collection.
    """


class ProtocolError(AggCursorError):
    """Raised when a server reply does not have the expected shape."""


class TransportError(AggCursorError):
    """Raised when the command channel could not deliver a command or
    receive its response.

    :param retryable: whether the channel classified the failure as
        transient. A cursor retries a getMore at most once on a retryable
        failure.
    """

    def __init__(
        self,
        message: str = "",
        retryable: bool = False,
        error_labels: Optional[Iterable[str]] = None,
        timeout: bool = False,
    ) -> None:
        super().__init__(message, error_labels)
        self.__retryable = retryable
        self.__timeout = timeout

    @property
    def retryable(self) -> bool:
        """True if the channel classified this failure as transient."""
        return self.__retryable

    @property
    def timeout(self) -> bool:
        return self.__timeout


def _format_detailed_error(message: str, details: Optional[Mapping[str, Any]]) -> str:
    if details is not None:
        message = f"{message}, full error: {details}"
    return message


class CommandFailed(AggCursorError):
    """Raised when the server rejects a command.

    The server's error code, code name and message are carried verbatim.
    """

    def __init__(
        self,
        error: str,
        code: Optional[int] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        error_labels = None
        if details is not None:
            error_labels = details.get("errorLabels")
        super().__init__(_format_detailed_error(error, details), error_labels=error_labels)
        self.__errmsg = error
        self.__code = code
        self.__details = details

    @property
    def code(self) -> Optional[int]:
        """The error code returned by the server, if any."""
        return self.__code

    @property
    def code_name(self) -> Optional[str]:
        """The ``codeName`` returned by the server, if any."""
        if self.__details is None:
            return None
        return self.__details.get("codeName")

    @property
    def errmsg(self) -> str:
        """The server's error message, without the details suffix."""
        return self.__errmsg

    @property
    def details(self) -> Optional[Mapping[str, Any]]:
        """The complete error document returned by the server."""
        return self.__details

    @property
    def timeout(self) -> bool:
        return self.__code == 50


class CursorNotFound(CommandFailed):
    """Raised while iterating if the cursor was invalidated on the server."""


class ExecutionTimeout(CommandFailed):
    """Raised when a command exceeds the ``maxTimeMS`` it was sent with."""

    @property
    def timeout(self) -> bool:
        return True


class CursorClosed(AggCursorError, StopAsyncIteration):
    """End-of-stream signal for a cursor that has terminated.

    Raised by every :meth:`~aggcursor.asynchronous.command_cursor.AsyncBatchCursor.next_batch`
    call made after the cursor was exhausted, closed, or failed. It is a
    :exc:`StopAsyncIteration`, so ``async for`` loops end cleanly, and it is
    raised again on each later call, so a closed cursor can be polled safely.
    """

    def __init__(self, message: str = "cursor is closed") -> None:
        super().__init__(message)
