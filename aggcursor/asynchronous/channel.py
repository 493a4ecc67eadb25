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

"""The command channel an aggregation sends its commands through."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Mapping, Optional

from pymongo.errors import (
    AutoReconnect,
    ConnectionFailure,
    OperationFailure,
    PyMongoError,
)

from aggcursor.errors import (
    CommandFailed,
    CursorNotFound,
    ExecutionTimeout,
    InvalidOperation,
    TransportError,
)

if TYPE_CHECKING:
    from pymongo.asynchronous.client_session import AsyncClientSession
    from pymongo.asynchronous.database import AsyncDatabase


class AsyncCommandChannel(ABC):
    """Sends one command document and returns the server's reply.

    Implementations may be shared by many cursors. A cursor never has more
    than one command outstanding on a channel at a time.
    """

    @abstractmethod
    async def send(self, command: Mapping[str, Any]) -> Mapping[str, Any]:
        """Send `command` and return the decoded reply.

        Raises :exc:`~aggcursor.errors.TransportError` when the command
        could not be delivered or the reply could not be read, and may raise
        :exc:`~aggcursor.errors.CommandFailed` or return an ``{"ok": 0}``
        reply when the server rejects the command.
        """

    @property
    def usable(self) -> bool:
        """Whether the channel can still deliver commands.

        Cursors only send best-effort killCursors over a usable channel.
        """
        return True


def _convert_operation_failure(exc: OperationFailure) -> CommandFailed:
    details = exc.details
    errmsg = details.get("errmsg", str(exc)) if details else str(exc)
    if exc.code == 43:
        return CursorNotFound(errmsg, exc.code, details)
    if exc.code == 50:
        return ExecutionTimeout(errmsg, exc.code, details)
    return CommandFailed(errmsg, exc.code, details)


class AsyncDatabaseChannel(AsyncCommandChannel):
    """A channel running commands through a :mod:`pymongo` database.

    PyMongo's errors are translated: :exc:`~pymongo.errors.OperationFailure`
    becomes :exc:`~aggcursor.errors.CommandFailed`,
    :exc:`~pymongo.errors.AutoReconnect` a retryable
    :exc:`~aggcursor.errors.TransportError`, and any other
    :exc:`~pymongo.errors.ConnectionFailure` a non-retryable one.

    The server only lets the session that created a cursor run getMore on
    it, so every command goes out under one session. Without an explicit
    `session` the channel starts its own on the first command and ends it
    in :meth:`close`::

      async with AsyncDatabaseChannel(client.db) as channel:
          cursor = await AsyncAggregateExecutor(channel, "coll").aggregate(pipeline)

    :param database: a :class:`~pymongo.asynchronous.database.AsyncDatabase`.
    :param session: an optional
        :class:`~pymongo.asynchronous.client_session.AsyncClientSession`
        attached to every command. The caller keeps ownership of it.
    """

    def __init__(
        self,
        database: AsyncDatabase[Any],
        session: Optional[AsyncClientSession] = None,
    ) -> None:
        self._database = database
        self._session = session
        self._owns_session = False
        self._closed = False

    @property
    def database(self) -> AsyncDatabase[Any]:
        return self._database

    @property
    def session(self) -> Optional[AsyncClientSession]:
        """The session commands are sent with, ``None`` before the first command
        of a channel that starts its own.
        """
        return self._session

    @property
    def usable(self) -> bool:
        if self._closed:
            return False
        return self._session is None or not self._session.has_ended

    def _get_session(self) -> AsyncClientSession:
        if self._closed:
            raise InvalidOperation("cannot send a command through a closed channel")
        if self._session is None:
            self._session = self._database.client.start_session()
            self._owns_session = True
        return self._session

    async def send(self, command: Mapping[str, Any]) -> Mapping[str, Any]:
        session = self._get_session()
        try:
            return await self._database.command(command, session=session)
        except OperationFailure as exc:
            raise _convert_operation_failure(exc) from exc
        except AutoReconnect as exc:
            raise TransportError(
                str(exc), retryable=True, error_labels=exc._error_labels, timeout=exc.timeout
            ) from exc
        except ConnectionFailure as exc:
            raise TransportError(str(exc), error_labels=exc._error_labels, timeout=exc.timeout) from exc
        except PyMongoError as exc:
            raise TransportError(str(exc), timeout=exc.timeout) from exc

    async def close(self) -> None:
        """End the session this channel started, if any.

        An explicit session passed to the constructor is left open.
        Calling it more than once has no further effect.
        """
        if self._closed:
            return
        self._closed = True
        if self._owns_session and self._session is not None:
            await self._session.end_session()

    async def __aenter__(self) -> AsyncDatabaseChannel:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"AsyncDatabaseChannel({self._database!r})"
