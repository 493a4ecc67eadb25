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

"""Utilities for testing cursors without a server."""
from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Mapping, Optional, Union

from aggcursor.asynchronous.channel import AsyncCommandChannel


class Gated:
    """A scripted reply that is held back until :meth:`open` is called."""

    def __init__(self, reply: Union[Mapping[str, Any], BaseException]) -> None:
        self.reply = reply
        self.sent = asyncio.Event()
        self._release = asyncio.Event()

    def open(self) -> None:
        self._release.set()

    async def wait(self) -> Union[Mapping[str, Any], BaseException]:
        self.sent.set()
        await self._release.wait()
        return self.reply


class MockChannel(AsyncCommandChannel):
    """A channel answering aggregate and getMore commands from a script.

    Each scripted entry is a reply document, an exception to raise, or a
    :class:`Gated` wrapper around either. killCursors commands are answered
    directly and never consume the script.
    """

    def __init__(self, *replies: Any, delay: float = 0) -> None:
        self.commands: list[dict[str, Any]] = []
        self.killed: list[int] = []
        self.kill_error: Optional[Exception] = None
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self._usable = True
        self._replies: deque[Any] = deque(replies)

    def add_reply(self, reply: Any) -> None:
        self._replies.append(reply)

    @property
    def usable(self) -> bool:
        return self._usable

    @usable.setter
    def usable(self, value: bool) -> None:
        self._usable = value

    def commands_named(self, name: str) -> list[dict[str, Any]]:
        return [cmd for cmd in self.commands if next(iter(cmd)) == name]

    @property
    def get_mores(self) -> list[dict[str, Any]]:
        return self.commands_named("getMore")

    async def send(self, command: Mapping[str, Any]) -> Mapping[str, Any]:
        self.commands.append(dict(command))
        if next(iter(command)) == "killCursors":
            return self._kill(command)

        if not self._replies:
            raise AssertionError(f"unexpected command {command!r}")
        reply = self._replies.popleft()
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if isinstance(reply, Gated):
                reply = await reply.wait()
        finally:
            self.in_flight -= 1
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def _kill(self, command: Mapping[str, Any]) -> Mapping[str, Any]:
        if self.kill_error is not None:
            raise self.kill_error
        ids = [int(cursor_id) for cursor_id in command["cursors"]]
        self.killed.extend(ids)
        return {"cursorsKilled": ids, "ok": 1.0}
