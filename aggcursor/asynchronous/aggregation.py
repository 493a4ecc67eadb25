# Copyright 2019-present MongoDB, Inc.
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

"""Perform aggregation operations on a collection or database."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Generic, Optional, Type, Union

from aggcursor import common
from aggcursor.asynchronous import network
from aggcursor.asynchronous.channel import AsyncCommandChannel
from aggcursor.asynchronous.command_cursor import AsyncBatchCursor
from aggcursor.errors import InvalidOperation
from aggcursor.message import _gen_aggregate_command, _unpack_cursor_reply
from aggcursor.options import DEFAULT_AGGREGATE_OPTIONS, AggregateOptions
from aggcursor.results import AggregateOutputResult
from aggcursor.typings import _DocumentType, _Pipeline

# getMore and killCursors target for a database level aggregate.
_DATABASE_AGGREGATE_COLLECTION = "$cmd.aggregate"

_Options = Union[AggregateOptions, Mapping[str, Any]]


class _AggregationCommand:
    """One aggregate command: a validated pipeline plus its options.

    Validation happens here, before anything is sent.
    """

    def __init__(
        self,
        collection: Optional[str],
        pipeline: _Pipeline,
        options: Optional[_Options],
    ) -> None:
        self._target = collection
        self._pipeline = common.validate_pipeline(pipeline)
        if options is None:
            options = DEFAULT_AGGREGATE_OPTIONS
        elif isinstance(options, Mapping):
            options = AggregateOptions.from_kwargs(**options)
        elif not isinstance(options, AggregateOptions):
            raise TypeError(
                f"options must be an instance of AggregateOptions or a mapping, not {type(options)}"
            )
        self._options = options
        self._performs_write = common.has_output_stage(self._pipeline)

    @property
    def performs_write(self) -> bool:
        """True if the pipeline ends with ``$out`` or ``$merge``."""
        return self._performs_write

    @property
    def options(self) -> AggregateOptions:
        return self._options

    @property
    def _cursor_collection(self) -> str:
        if self._target is None:
            return _DATABASE_AGGREGATE_COLLECTION
        return self._target

    def as_command(self) -> dict[str, Any]:
        return _gen_aggregate_command(
            self._target, self._pipeline, self._options, self._performs_write
        )

    async def get_result(
        self,
        channel: AsyncCommandChannel,
        cursor_class: Type[AsyncBatchCursor[Any]],
    ) -> Union[AsyncBatchCursor[Any], AggregateOutputResult]:
        """Send the aggregate command and wrap its reply."""
        result = await network.command(channel, self.as_command(), namespace=self._target)

        if self._performs_write:
            return AggregateOutputResult(result, self._pipeline[-1])

        # Checks the reply shape before a cursor is built from it.
        _unpack_cursor_reply(result, "firstBatch")
        return cursor_class(
            channel,
            result["cursor"],
            self._cursor_collection,
            batch_size=self._options.batch_size or 0,
            max_await_time_ms=self._options.max_await_time_ms,
            comment=self._options.comment,
        )


class AsyncAggregateExecutor(Generic[_DocumentType]):
    """Runs aggregation pipelines against one collection, or against a
    database when `collection` is ``None``.

    :param channel: the :class:`~aggcursor.asynchronous.channel.AsyncCommandChannel`
        commands are sent through.
    :param collection: the name of the collection to aggregate.
    """

    _cursor_class = AsyncBatchCursor

    def __init__(self, channel: AsyncCommandChannel, collection: Optional[str] = None) -> None:
        if not isinstance(channel, AsyncCommandChannel):
            raise TypeError(
                f"channel must be an instance of AsyncCommandChannel, not {type(channel)}"
            )
        if collection is not None and not isinstance(collection, str):
            raise TypeError(f"collection must be an instance of str, not {type(collection)}")
        self._channel = channel
        self._collection = collection

    @property
    def channel(self) -> AsyncCommandChannel:
        return self._channel

    @property
    def collection(self) -> Optional[str]:
        return self._collection

    async def execute(
        self, pipeline: _Pipeline, options: Optional[_Options] = None
    ) -> Union[AsyncBatchCursor[_DocumentType], AggregateOutputResult]:
        """Run an aggregation.

        A pipeline ending with ``$out`` or ``$merge`` returns an
        :class:`~aggcursor.results.AggregateOutputResult` once the server
        acknowledges it; no cursor is created and the cursor options
        (``batch_size``, ``max_await_time_ms``) are ignored. Any other
        pipeline returns an
        :class:`~aggcursor.asynchronous.command_cursor.AsyncBatchCursor`
        seeded with the first batch.

        Raises :exc:`~aggcursor.errors.InvalidArgument` for an empty or
        malformed pipeline before anything is sent, and
        :exc:`~aggcursor.errors.CommandFailed` or
        :exc:`~aggcursor.errors.TransportError` if the aggregate command
        fails.

        :param pipeline: a list of aggregation pipeline stages
        :param options: an :class:`~aggcursor.options.AggregateOptions`, or a
            mapping accepted by its :meth:`~aggcursor.options.AggregateOptions.from_kwargs`.
        """
        cmd = _AggregationCommand(self._collection, pipeline, options)
        return await cmd.get_result(self._channel, self._cursor_class)

    async def aggregate(
        self, pipeline: _Pipeline, options: Optional[_Options] = None
    ) -> AsyncBatchCursor[_DocumentType]:
        """Run an aggregation and return a cursor over its results.

        Raises :exc:`~aggcursor.errors.InvalidOperation` if the pipeline ends
        with ``$out`` or ``$merge``, use :meth:`to_collection` for those.

        :param pipeline: a list of aggregation pipeline stages
        :param options: an :class:`~aggcursor.options.AggregateOptions`, or a
            mapping accepted by its :meth:`~aggcursor.options.AggregateOptions.from_kwargs`.
        """
        cmd = _AggregationCommand(self._collection, pipeline, options)
        if cmd.performs_write:
            raise InvalidOperation(
                "aggregate() cannot return a cursor for a pipeline ending with "
                "$out or $merge, use to_collection()"
            )
        return await cmd.get_result(self._channel, self._cursor_class)  # type: ignore[return-value]

    async def to_collection(
        self, pipeline: _Pipeline, options: Optional[_Options] = None
    ) -> AggregateOutputResult:
        """Run an aggregation whose pipeline ends with ``$out`` or ``$merge``.

        Raises :exc:`~aggcursor.errors.InvalidOperation` if the pipeline does
        not end with one of those stages.

        :param pipeline: a list of aggregation pipeline stages
        :param options: an :class:`~aggcursor.options.AggregateOptions`, or a
            mapping accepted by its :meth:`~aggcursor.options.AggregateOptions.from_kwargs`.
        """
        cmd = _AggregationCommand(self._collection, pipeline, options)
        if not cmd.performs_write:
            raise InvalidOperation("the pipeline must end with a $out or $merge stage")
        return await cmd.get_result(self._channel, self._cursor_class)  # type: ignore[return-value]
