# Copyright 2014-present MongoDB, Inc.
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

"""AsyncBatchCursor class to iterate over the batches of an aggregation."""
from __future__ import annotations

import asyncio
import time
from typing import (
    Any,
    Generic,
    Mapping,
    Optional,
)

from aggcursor.asynchronous import network
from aggcursor.asynchronous.channel import AsyncCommandChannel
from aggcursor.batch_buffer import _BatchBuffer
from aggcursor.cursor_shared import CursorState
from aggcursor.cursor_state import _CursorStateMachine
from aggcursor.errors import CursorClosed
from aggcursor.logger import _CURSOR_LOGGER, _CursorStatusMessage, _debug_log
from aggcursor.message import (
    _CursorReply,
    _gen_get_more_command,
    _gen_kill_cursors_command,
    _split_namespace,
    _unpack_cursor_reply,
)
from aggcursor.typings import _DocumentType


class AsyncBatchCursor(Generic[_DocumentType]):
    """An asynchronous cursor over the batches of an aggregation.

    Each :meth:`next_batch` call returns one whole server batch. Batches are
    returned in the order the server sent them and every document is
    returned exactly once.

    Should not be created directly by application developers, see
    :meth:`~aggcursor.asynchronous.aggregation.AsyncAggregateExecutor.aggregate`
    instead.
    """

    def __init__(
        self,
        channel: AsyncCommandChannel,
        cursor_info: Mapping[str, Any],
        collection: Optional[str] = None,
        batch_size: int = 0,
        max_await_time_ms: Optional[int] = None,
        comment: Optional[Any] = None,
    ) -> None:
        """Create a new batch cursor from the ``cursor`` document of an
        aggregate reply.
        """
        self._channel = channel
        self._buffer: _BatchBuffer[_DocumentType] = _BatchBuffer(cursor_info["firstBatch"])
        # An absent id means the server returned every result inline.
        self._state = _CursorStateMachine(int(cursor_info.get("id") or 0), max_await_time_ms)
        self._postbatchresumetoken: Optional[Mapping[str, Any]] = cursor_info.get(
            "postBatchResumeToken"
        )
        self._comment = comment
        self._max_await_time_ms = max_await_time_ms
        self._batch_size = 0
        self.batch_size(batch_size)

        if "ns" in cursor_info:  # noqa: SIM401
            self._ns = cursor_info["ns"]
            self._collname = _split_namespace(self._ns)[1]
        elif collection is not None:
            self._ns = collection
            self._collname = collection
        else:
            raise TypeError("a collection name is required when the reply has no namespace")

        # Serializes next_batch() callers; close() never takes it.
        self._lock = asyncio.Lock()
        self._kill_tasks: set[asyncio.Task[None]] = set()

    def batch_size(self, batch_size: int) -> AsyncBatchCursor[_DocumentType]:
        """Limits the number of documents returned in one batch by future
        getMore commands. A getMore already in flight is not affected.

        Raises :exc:`TypeError` if `batch_size` is not an integer.
        Raises :exc:`ValueError` if `batch_size` is less than ``0``.

        :param batch_size: The size of each batch of results requested.
            ``0`` lets the server choose.
        """
        if not isinstance(batch_size, int) or isinstance(batch_size, bool):
            raise TypeError(f"batch_size must be an integer, not {type(batch_size)}")
        if batch_size < 0:
            raise ValueError("batch_size must be >= 0")

        self._batch_size = batch_size
        return self

    @property
    def alive(self) -> bool:
        """Does this cursor have the potential to return more data?

        Even if :attr:`alive` is ``True``, :meth:`next_batch` can raise
        :exc:`~aggcursor.errors.CursorClosed`.
        """
        if self._state.closed or self._state.close_pending:
            return False
        return bool(self._buffer) or not self._state.terminated

    @property
    def cursor_id(self) -> int:
        """Returns the id of the cursor."""
        return self._state.cursor_id

    @property
    def namespace(self) -> str:
        """The namespace the cursor reads from."""
        return self._ns

    @property
    def state(self) -> CursorState:
        """The cursor's current :class:`~aggcursor.cursor_shared.CursorState`."""
        return self._state.state

    @property
    def post_batch_resume_token(self) -> Optional[Mapping[str, Any]]:
        """Retrieve the postBatchResumeToken from the response to a
        changeStream aggregate or getMore.
        """
        return self._postbatchresumetoken

    async def next_batch(self) -> list[_DocumentType]:
        """Return the next batch of documents.

        The first call returns the batch sent with the aggregate reply.
        Later calls run a getMore. For a cursor with ``max_await_time_ms``
        set, empty batches are not returned until the await time has passed
        since the call started; getMores are reissued instead.

        Concurrent calls are served one after the other, each receiving its
        own batch.

        Raises :exc:`~aggcursor.errors.CursorClosed` once the cursor is
        exhausted or closed, and on every call after that. A failed getMore
        raises its error once and then closes the cursor.
        """
        async with self._lock:
            return await self._next_batch()

    async def try_next_batch(self) -> Optional[list[_DocumentType]]:
        """Like :meth:`next_batch`, but returns ``None`` instead of raising
        at end-of-stream.
        """
        try:
            return await self.next_batch()
        except CursorClosed:
            return None

    async def _next_batch(self) -> list[_DocumentType]:
        if self._state.closed:
            raise CursorClosed()
        if self._buffer:
            self._state.on_delivered()
            return self._buffer.drain_all()
        if not self._state.should_fetch(buffer_empty=True):
            # Exhausted with nothing left to hand out.
            self._die()
            raise CursorClosed()
        return await self._refresh()

    async def _refresh(self) -> list[_DocumentType]:
        """Run getMores until there is a batch to return.

        Sends more than one getMore only to retry a retryable transport
        failure once, or to keep waiting within the await-time budget.
        """
        started = time.monotonic()
        while True:
            self._state.begin_fetch()
            try:
                reply = await self._send_get_more()
            except asyncio.CancelledError:
                self._schedule_kill(self._state.abandon())
                raise
            except Exception as exc:
                if self._state.close_pending:
                    _debug_log(
                        _CURSOR_LOGGER,
                        message=_CursorStatusMessage.LATE_REPLY_DISCARDED,
                        cursorId=self._state.cursor_id,
                        namespace=self._ns,
                    )
                    self._schedule_kill(self._state.settle_pending_close(error=exc))
                    raise CursorClosed() from None
                if self._state.on_failure(exc):
                    _debug_log(
                        _CURSOR_LOGGER,
                        message=_CursorStatusMessage.GET_MORE_RETRIED,
                        cursorId=self._state.cursor_id,
                        namespace=self._ns,
                        failure=str(exc),
                    )
                    continue
                self._die()
                raise

            if self._state.close_pending:
                _debug_log(
                    _CURSOR_LOGGER,
                    message=_CursorStatusMessage.LATE_REPLY_DISCARDED,
                    cursorId=reply.cursor_id,
                    namespace=self._ns,
                )
                self._schedule_kill(self._state.settle_pending_close(reply.cursor_id))
                raise CursorClosed()

            self._postbatchresumetoken = reply.post_batch_resume_token
            await_more = self._state.on_response(
                self._buffer, reply.documents, reply.cursor_id, time.monotonic() - started
            )
            if not await_more:
                break
            _debug_log(
                _CURSOR_LOGGER,
                message=_CursorStatusMessage.AWAIT_RETRIED,
                cursorId=reply.cursor_id,
                namespace=self._ns,
                maxAwaitTimeMS=self._max_await_time_ms,
            )

        if not self._buffer and self._state.terminated:
            self._die()
            raise CursorClosed()
        return self._buffer.drain_all()

    async def _send_get_more(self) -> _CursorReply:
        """Send a getMore message and read the reply."""
        cmd = _gen_get_more_command(
            self._state.cursor_id,
            self._collname,
            self._batch_size,
            self._max_await_time_ms,
            self._comment,
        )
        response = await network.command(self._channel, cmd, namespace=self._ns)
        return _unpack_cursor_reply(response, "nextBatch")

    def _die(self) -> None:
        """Closes this cursor without waiting for any server round trip."""
        already_closed = self._state.closed
        self._schedule_kill(self._state.close())
        if not already_closed and self._state.closed:
            self._buffer.discard()
            _debug_log(
                _CURSOR_LOGGER,
                message=_CursorStatusMessage.CLOSED,
                cursorId=self._state.cursor_id,
                namespace=self._ns,
            )

    def _schedule_kill(self, cursor_id: int) -> None:
        """Send killCursors in the background; its outcome is never raised."""
        if not cursor_id or not self._channel.usable:
            return
        task = asyncio.get_running_loop().create_task(self._kill_cursor(cursor_id))
        self._kill_tasks.add(task)
        task.add_done_callback(self._kill_tasks.discard)

    async def _kill_cursor(self, cursor_id: int) -> None:
        cmd = _gen_kill_cursors_command(cursor_id, self._collname)
        try:
            await network.command(self._channel, cmd, namespace=self._ns)
        except Exception as exc:
            _debug_log(
                _CURSOR_LOGGER,
                message=_CursorStatusMessage.KILL_FAILED,
                cursorId=cursor_id,
                namespace=self._ns,
                failure=str(exc),
            )

    async def close(self) -> None:
        """Explicitly close / kill this cursor.

        Safe to call while :meth:`next_batch` is waiting for a getMore: the
        late reply is discarded and the waiting caller gets end-of-stream.
        Calling it more than once has no further effect.
        """
        self._die()

    def __aiter__(self) -> AsyncBatchCursor[_DocumentType]:
        return self

    async def __anext__(self) -> list[_DocumentType]:
        return await self.next_batch()

    async def __aenter__(self) -> AsyncBatchCursor[_DocumentType]:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def to_list(self, length: Optional[int] = None) -> list[_DocumentType]:
        """Converts the contents of this cursor to a list of documents.

        To use::

          >>> await cursor.to_list()

        Or, to read at most n items from the cursor::

          >>> await cursor.to_list(n)

        Documents beyond `length` in the last batch read stay buffered for the
        next call. If the cursor is empty or has no more results, an empty
        list will be returned.
        """
        res: list[_DocumentType] = []
        if isinstance(length, int) and length < 1:
            raise ValueError("to_list() length must be greater than 0")
        async with self._lock:
            while length is None or len(res) < length:
                try:
                    batch = await self._next_batch()
                except CursorClosed:
                    break
                if not batch:
                    break
                if length is not None and len(batch) > length - len(res):
                    keep = length - len(res)
                    # The rest of this batch is handed out by the next call.
                    self._buffer.install(batch[keep:])
                    batch = batch[:keep]
                res.extend(batch)
        return res

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(ns={self._ns!r}, state={self._state!r})"
