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

"""Tools for creating the command documents an aggregation sends and for
reading the server's replies.

.. note:: This module is for internal use and is generally not needed by
   application developers.
"""
from __future__ import annotations

from collections import abc
from typing import Any, Mapping, NamedTuple, Optional, Sequence

from bson.int64 import Int64

from aggcursor.errors import (
    CommandFailed,
    CursorNotFound,
    ExecutionTimeout,
    ProtocolError,
)
from aggcursor.options import AggregateOptions


def _gen_aggregate_command(
    coll: Optional[str],
    pipeline: Sequence[Mapping[str, Any]],
    options: AggregateOptions,
    performs_write: bool,
) -> dict[str, Any]:
    """Generate an aggregate command document.

    `coll` of ``None`` generates a database level aggregate. A pipeline
    that writes to a collection never asks for a batch size.
    """
    cmd: dict[str, Any] = {"aggregate": coll if coll is not None else 1}
    cmd["pipeline"] = list(pipeline)
    cursor: dict[str, Any] = {}
    if options.batch_size is not None and not performs_write:
        cursor["batchSize"] = options.batch_size
    cmd["cursor"] = cursor
    cmd.update(options.command_fields())
    return cmd


def _gen_get_more_command(
    cursor_id: int,
    coll: str,
    batch_size: Optional[int],
    max_await_time_ms: Optional[int],
    comment: Optional[Any],
) -> dict[str, Any]:
    """Generate a getMore command document."""
    cmd: dict[str, Any] = {"getMore": Int64(cursor_id), "collection": coll}
    if batch_size:
        cmd["batchSize"] = batch_size
    if max_await_time_ms is not None:
        cmd["maxTimeMS"] = max_await_time_ms
    if comment is not None:
        cmd["comment"] = comment
    return cmd


def _gen_kill_cursors_command(cursor_id: int, coll: str) -> dict[str, Any]:
    """Generate a killCursors command document."""
    return {"killCursors": coll, "cursors": [Int64(cursor_id)]}


def _split_namespace(namespace: str) -> tuple[str, str]:
    """Split "db.collection" into its database and collection names."""
    dbname, _, collname = namespace.partition(".")
    if not dbname or not collname:
        raise ProtocolError(f"invalid cursor namespace {namespace!r}")
    return dbname, collname


class _CursorReply(NamedTuple):
    """The parts of a cursor reply a batch cursor needs."""

    cursor_id: int
    documents: list[Any]
    post_batch_resume_token: Optional[Mapping[str, Any]]


def _unpack_cursor_reply(response: Mapping[str, Any], batch_field: str) -> _CursorReply:
    """Read the cursor sub-document of an aggregate or getMore reply.

    `batch_field` is ``"firstBatch"`` for aggregate replies and
    ``"nextBatch"`` for getMore replies.
    """
    cursor = response.get("cursor")
    if not isinstance(cursor, abc.Mapping):
        raise ProtocolError(f"reply has no cursor document: {response!r}")
    documents = cursor.get(batch_field)
    if documents is None:
        raise ProtocolError(f"cursor document has no {batch_field!r} field: {cursor!r}")
    return _CursorReply(
        int(cursor.get("id") or 0),
        list(documents),
        cursor.get("postBatchResumeToken"),
    )


def _check_command_response(response: Mapping[str, Any]) -> None:
    """Check the response to a command for errors."""
    if "ok" not in response:
        # Server didn't recognize our message as a command.
        raise CommandFailed(response.get("$err", "unknown error"), response.get("code"), response)

    if response["ok"]:
        return

    details = response
    # Mongos returns the error details in a 'raw' object
    # for some errors.
    if "raw" in response:
        for shard in response["raw"].values():
            # Grab the first non-empty raw error from a shard.
            if shard.get("errmsg") and not shard.get("ok"):
                details = shard
                break

    errmsg = details.get("errmsg", "")
    code = details.get("code")
    if code == 43:
        raise CursorNotFound(errmsg, code, response)
    elif code == 50:
        raise ExecutionTimeout(errmsg, code, response)
    raise CommandFailed(errmsg, code, response)


def _convert_exception(exception: Exception) -> dict[str, Any]:
    """Convert an Exception into a failure document for logging."""
    return {"errmsg": str(exception), "errtype": exception.__class__.__name__}
