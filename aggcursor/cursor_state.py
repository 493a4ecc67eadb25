# Copyright 2024-present MongoDB, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License"); you
# may not use this file except in compliance with the License.  You
# may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or
# implied.  See the License for the specific language governing
# permissions and limitations under the License.

"""The state machine deciding when a batch cursor fetches and when it stops.

This module does no I/O. The async cursor drives it around each getMore
round trip.
"""
from __future__ import annotations

from typing import Any, Iterable, Optional

from aggcursor.batch_buffer import _BatchBuffer
from aggcursor.cursor_shared import _CURSOR_CLOSED_ERRORS, CursorState
from aggcursor.errors import CommandFailed, InvalidOperation, TransportError


class _CursorStateMachine:
    """Owns a cursor's server-side id and lifecycle state.

    :param cursor_id: the id from the aggregate reply, ``0`` when the
        server returned every result inline.
    :param max_await_time_ms: the await-time budget for tailable
        (await-data) cursors, or ``None``.
    """

    def __init__(self, cursor_id: int, max_await_time_ms: Optional[int] = None) -> None:
        self._cursor_id = cursor_id
        self._max_await_time_ms = max_await_time_ms
        self._state = CursorState.FRESH if cursor_id else CursorState.EXHAUSTED
        # Whether the server still holds the cursor and a killCursors is useful.
        self._killable = bool(cursor_id)
        self._retried = False
        self._close_pending = False

    @property
    def state(self) -> CursorState:
        return self._state

    @property
    def cursor_id(self) -> int:
        return self._cursor_id

    @property
    def max_await_time_ms(self) -> Optional[int]:
        return self._max_await_time_ms

    @property
    def closed(self) -> bool:
        return self._state is CursorState.CLOSED

    @property
    def terminated(self) -> bool:
        """True once no further batch will ever be fetched."""
        return self._state in (CursorState.CLOSED, CursorState.EXHAUSTED)

    @property
    def close_pending(self) -> bool:
        """True when close() was called while a getMore was outstanding."""
        return self._close_pending

    def should_fetch(self, buffer_empty: bool) -> bool:
        """Return True when the next pull needs a getMore round trip."""
        return (
            buffer_empty
            and self._state in (CursorState.FRESH, CursorState.IDLE)
            and bool(self._cursor_id)
        )

    def on_delivered(self) -> None:
        """Record that the buffered (first) batch was handed out."""
        if self._state is CursorState.FRESH:
            self._state = CursorState.IDLE

    def begin_fetch(self) -> None:
        """Enter FETCHING before a getMore is sent."""
        if self._state is CursorState.FETCHING:
            raise InvalidOperation("a getMore is already outstanding on this cursor")
        if self._state not in (CursorState.FRESH, CursorState.IDLE):
            raise InvalidOperation(f"cannot fetch from a cursor in state {self._state.value}")
        self._state = CursorState.FETCHING

    def on_response(
        self,
        buffer: _BatchBuffer[Any],
        batch: Iterable[Any],
        new_cursor_id: int,
        elapsed: float,
    ) -> bool:
        """Install a getMore reply.

        :param elapsed: seconds since the consumer's pull started.
        :return: True when the batch was empty, the cursor is still open
            and the await-time budget has not run out, meaning the caller
            should send another getMore instead of surfacing the empty batch.
        """
        buffer.install(batch)
        self._cursor_id = new_cursor_id
        self._retried = False
        if new_cursor_id:
            self._state = CursorState.IDLE
        else:
            self._state = CursorState.EXHAUSTED
            self._killable = False
            return False
        if buffer or self._max_await_time_ms is None:
            return False
        return elapsed * 1000 < self._max_await_time_ms

    def on_failure(self, error: Exception) -> bool:
        """Handle a failed getMore.

        :return: True if the getMore should be retried. Only a retryable
            :exc:`~aggcursor.errors.TransportError` is retried, and only
            once per getMore; every other failure closes the cursor.
        """
        if isinstance(error, TransportError) and error.retryable and not self._retried:
            self._retried = True
            self._state = CursorState.IDLE
            return True
        self._note_failure(error)
        self._state = CursorState.CLOSED
        return False

    def _note_failure(self, error: Exception) -> None:
        if isinstance(error, TransportError):
            # The server connection is gone, along with the cursor.
            self._killable = False
        elif isinstance(error, CommandFailed) and error.code in _CURSOR_CLOSED_ERRORS:
            # Don't send killCursors because the cursor is already closed.
            self._killable = False

    def close(self) -> int:
        """Move to CLOSED.

        Idempotent. While a getMore is outstanding the close is only
        recorded, see :meth:`settle_pending_close`.

        :return: the cursor id a killCursors should be sent for, or ``0``.
        """
        if self._state is CursorState.FETCHING:
            self._close_pending = True
            return 0
        return self._close_now()

    def settle_pending_close(
        self, new_cursor_id: Optional[int] = None, error: Optional[Exception] = None
    ) -> int:
        """Finish a close() that raced with a getMore once it has settled.

        :param new_cursor_id: the id from the late reply, or ``None`` when
            the getMore failed.
        :param error: the getMore's failure, if it failed.
        :return: the cursor id a killCursors should be sent for, or ``0``.
        """
        self._close_pending = False
        if new_cursor_id is not None:
            self._cursor_id = new_cursor_id
            self._killable = bool(new_cursor_id)
        if error is not None:
            self._note_failure(error)
        return self._close_now()

    def abandon(self) -> int:
        """Close immediately, even while FETCHING (task cancellation)."""
        self._close_pending = False
        return self._close_now()

    def _close_now(self) -> int:
        if self._state is CursorState.CLOSED and not self._killable:
            return 0
        self._state = CursorState.CLOSED
        cursor_id = self._cursor_id if self._killable else 0
        self._killable = False
        return cursor_id

    def __repr__(self) -> str:
        return f"_CursorStateMachine(id={self._cursor_id}, state={self._state.value})"
