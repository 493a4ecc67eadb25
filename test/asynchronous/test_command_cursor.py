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

"""Test the AsyncBatchCursor against a scripted channel."""
from __future__ import annotations

import asyncio
import sys

sys.path[0:0] = [""]

from test import cursor_reply, get_more_reply, unittest
from test.asynchronous import AsyncAggCursorTestCase
from test.asynchronous.utils import Gated, MockChannel

from aggcursor.asynchronous.command_cursor import AsyncBatchCursor
from aggcursor.cursor_shared import CursorState
from aggcursor.errors import (
    CommandFailed,
    CursorClosed,
    CursorNotFound,
    TransportError,
)


def make_cursor(channel, cursor_id, first_batch, **kwargs):
    reply = cursor_reply(cursor_id, first_batch, ns=kwargs.pop("ns", "db.coll"))
    return AsyncBatchCursor(channel, reply["cursor"], "coll", **kwargs)


class TestAsyncBatchCursor(AsyncAggCursorTestCase):
    async def test_exhaustion(self):
        channel = MockChannel(get_more_reply(0, [{"_id": 3}]))
        cursor = make_cursor(channel, 42, [{"_id": 1}, {"_id": 2}])
        self.assertEqual(CursorState.FRESH, cursor.state)
        self.assertTrue(cursor.alive)

        self.assertEqual([{"_id": 1}, {"_id": 2}], await cursor.next_batch())
        self.assertEqual([], channel.commands)
        self.assertEqual(CursorState.IDLE, cursor.state)

        self.assertEqual([{"_id": 3}], await cursor.next_batch())
        self.assertEqual([{"getMore": 42, "collection": "coll"}], channel.get_mores)
        self.assertEqual(CursorState.EXHAUSTED, cursor.state)
        self.assertEqual(0, cursor.cursor_id)
        self.assertFalse(cursor.alive)

        with self.assertRaises(CursorClosed):
            await cursor.next_batch()
        # End-of-stream is sticky.
        with self.assertRaises(CursorClosed):
            await cursor.next_batch()
        self.assertIsNone(await cursor.try_next_batch())

        await self.wait_for_kills(cursor)
        self.assertEqual(CursorState.CLOSED, cursor.state)
        self.assertEqual([], channel.commands_named("killCursors"))
        self.assertEqual(1, len(channel.commands))

    async def test_first_batch_is_everything(self):
        channel = MockChannel()
        cursor = make_cursor(channel, 0, [{"_id": 1}])
        self.assertEqual(CursorState.EXHAUSTED, cursor.state)
        self.assertEqual([{"_id": 1}], await cursor.next_batch())
        with self.assertRaises(CursorClosed):
            await cursor.next_batch()
        self.assertEqual([], channel.commands)

    async def test_empty_first_batch_exhausted(self):
        channel = MockChannel()
        cursor = make_cursor(channel, 0, [])
        self.assertFalse(cursor.alive)
        with self.assertRaises(CursorClosed):
            await cursor.next_batch()
        self.assertEqual([], channel.commands)

    async def test_empty_first_batch_open(self):
        channel = MockChannel(get_more_reply(42, [{"_id": 1}]))
        cursor = make_cursor(channel, 42, [])
        self.assertEqual([{"_id": 1}], await cursor.next_batch())
        self.assertEqual(1, len(channel.get_mores))

    async def test_get_more_fields(self):
        channel = MockChannel(get_more_reply(42, [{"_id": 2}]), get_more_reply(0, [{"_id": 3}]))
        cursor = make_cursor(
            channel, 42, [{"_id": 1}], batch_size=3, max_await_time_ms=100, comment="report"
        )
        await cursor.next_batch()
        await cursor.next_batch()
        self.assertIs(cursor, cursor.batch_size(5))
        await cursor.next_batch()
        self.assertEqual(
            [
                {
                    "getMore": 42,
                    "collection": "coll",
                    "batchSize": 3,
                    "maxTimeMS": 100,
                    "comment": "report",
                },
                {
                    "getMore": 42,
                    "collection": "coll",
                    "batchSize": 5,
                    "maxTimeMS": 100,
                    "comment": "report",
                },
            ],
            channel.get_mores,
        )

    async def test_missing_cursor_id_means_exhausted(self):
        channel = MockChannel()
        cursor = AsyncBatchCursor(channel, {"ns": "db.coll", "firstBatch": [{"_id": 1}]})
        self.assertEqual(0, cursor.cursor_id)
        self.assertEqual([{"_id": 1}], await cursor.next_batch())
        with self.assertRaises(CursorClosed):
            await cursor.next_batch()
        await cursor.close()
        await self.wait_for_kills(cursor)
        self.assertEqual([], channel.commands)

    async def test_batch_size_validation(self):
        cursor = make_cursor(MockChannel(), 0, [])
        with self.assertRaises(TypeError):
            cursor.batch_size(1.5)
        with self.assertRaises(TypeError):
            cursor.batch_size(True)
        with self.assertRaises(ValueError):
            cursor.batch_size(-1)
        cursor.batch_size(0)

    async def test_namespace(self):
        channel = MockChannel(get_more_reply(0, []))
        cursor = make_cursor(channel, 42, [], ns="db.other")
        self.assertEqual("db.other", cursor.namespace)
        with self.assertRaises(CursorClosed):
            await cursor.next_batch()
        self.assertEqual("other", channel.get_mores[0]["collection"])

    async def test_namespace_required(self):
        with self.assertRaises(TypeError):
            AsyncBatchCursor(MockChannel(), {"id": 0, "firstBatch": []})
        cursor = AsyncBatchCursor(MockChannel(), {"id": 0, "firstBatch": []}, "coll")
        self.assertEqual("coll", cursor.namespace)

    async def test_await_retries_until_documents(self):
        channel = MockChannel(
            get_more_reply(42, []), get_more_reply(42, []), get_more_reply(42, [{"_id": 1}])
        )
        cursor = make_cursor(channel, 42, [], max_await_time_ms=60000)
        with self.assertLogs("aggcursor.cursor", level="DEBUG") as cm:
            self.assertEqual([{"_id": 1}], await cursor.next_batch())
        self.assertEqual(3, len(channel.get_mores))
        for cmd in channel.get_mores:
            self.assertEqual(60000, cmd["maxTimeMS"])
        retried = [r for r in cm.records if "getMore reissued" in r.getMessage()]
        self.assertEqual(2, len(retried))

    async def test_await_budget_spent(self):
        channel = MockChannel(get_more_reply(42, []), delay=0.01)
        cursor = make_cursor(channel, 42, [], max_await_time_ms=1)
        self.assertEqual([], await cursor.next_batch())
        self.assertEqual(1, len(channel.get_mores))
        self.assertEqual(CursorState.IDLE, cursor.state)
        self.assertTrue(cursor.alive)

    async def test_empty_batch_without_await(self):
        channel = MockChannel(get_more_reply(42, []))
        cursor = make_cursor(channel, 42, [])
        self.assertEqual([], await cursor.next_batch())
        self.assertEqual(1, len(channel.get_mores))
        self.assertTrue(cursor.alive)

    async def test_await_ends_on_exhaustion(self):
        channel = MockChannel(get_more_reply(0, []))
        cursor = make_cursor(channel, 42, [], max_await_time_ms=60000)
        with self.assertRaises(CursorClosed):
            await cursor.next_batch()
        self.assertEqual(1, len(channel.get_mores))

    async def test_retry_retryable_transport_error(self):
        channel = MockChannel(
            TransportError("connection reset", retryable=True), get_more_reply(0, [{"_id": 1}])
        )
        cursor = make_cursor(channel, 42, [])
        with self.assertLogs("aggcursor.cursor", level="DEBUG") as cm:
            self.assertEqual([{"_id": 1}], await cursor.next_batch())
        self.assertEqual(2, len(channel.get_mores))
        self.assertIn("GetMore retried", cm.records[0].getMessage())

    async def test_retry_only_once(self):
        channel = MockChannel(
            TransportError("connection reset", retryable=True),
            TransportError("connection reset again", retryable=True),
        )
        cursor = make_cursor(channel, 42, [])
        with self.assertRaisesRegex(TransportError, "again"):
            await cursor.next_batch()
        self.assertEqual(CursorState.CLOSED, cursor.state)
        with self.assertRaises(CursorClosed):
            await cursor.next_batch()
        await self.wait_for_kills(cursor)
        self.assertEqual(2, len(channel.commands))
        self.assertEqual([], channel.killed)

    async def test_retry_allowance_per_get_more(self):
        channel = MockChannel(
            TransportError("reset", retryable=True),
            get_more_reply(42, [{"_id": 1}]),
            TransportError("reset", retryable=True),
            get_more_reply(0, [{"_id": 2}]),
        )
        cursor = make_cursor(channel, 42, [])
        self.assertEqual([{"_id": 1}], await cursor.next_batch())
        self.assertEqual([{"_id": 2}], await cursor.next_batch())
        self.assertEqual(4, len(channel.get_mores))

    async def test_non_retryable_transport_error(self):
        channel = MockChannel(TransportError("broken pipe"))
        cursor = make_cursor(channel, 42, [])
        with self.assertRaises(TransportError):
            await cursor.next_batch()
        await self.wait_for_kills(cursor)
        self.assertEqual(1, len(channel.commands))
        self.assertEqual([], channel.killed)
        self.assertFalse(cursor.alive)

    async def test_command_failed_kills_cursor(self):
        channel = MockChannel({"ok": 0.0, "errmsg": "interrupted", "code": 11601})
        cursor = make_cursor(channel, 42, [])
        with self.assertRaises(CommandFailed) as ctx:
            await cursor.next_batch()
        self.assertEqual(11601, ctx.exception.code)
        await self.wait_for_kills(cursor)
        self.assertEqual([42], channel.killed)
        self.assertEqual(
            {"killCursors": "coll", "cursors": [42]}, channel.commands_named("killCursors")[0]
        )
        with self.assertRaises(CursorClosed):
            await cursor.next_batch()

    async def test_cursor_not_found_skips_kill(self):
        channel = MockChannel({"ok": 0.0, "errmsg": "cursor id 42 not found", "code": 43})
        cursor = make_cursor(channel, 42, [])
        with self.assertRaises(CursorNotFound):
            await cursor.next_batch()
        await self.wait_for_kills(cursor)
        self.assertEqual([], channel.killed)

    async def test_close(self):
        channel = MockChannel()
        cursor = make_cursor(channel, 42, [{"_id": 1}])
        with self.assertLogs("aggcursor.cursor", level="DEBUG") as cm:
            await cursor.close()
        self.assertIn("Cursor closed", cm.records[0].getMessage())
        await cursor.close()
        await self.wait_for_kills(cursor)
        self.assertEqual([42], channel.killed)
        self.assertEqual(CursorState.CLOSED, cursor.state)
        self.assertFalse(cursor.alive)
        # Undelivered documents are dropped.
        with self.assertRaises(CursorClosed):
            await cursor.next_batch()

    async def test_close_exhausted(self):
        channel = MockChannel()
        cursor = make_cursor(channel, 0, [{"_id": 1}])
        await cursor.close()
        await self.wait_for_kills(cursor)
        self.assertEqual([], channel.commands)

    async def test_close_unusable_channel(self):
        channel = MockChannel()
        channel.usable = False
        cursor = make_cursor(channel, 42, [])
        await cursor.close()
        await self.wait_for_kills(cursor)
        self.assertEqual([], channel.commands)

    async def test_kill_failure_not_raised(self):
        channel = MockChannel()
        channel.kill_error = TransportError("network down")
        cursor = make_cursor(channel, 42, [])
        with self.assertLogs("aggcursor.cursor", level="DEBUG") as cm:
            await cursor.close()
            await self.wait_for_kills(cursor)
        messages = [r.getMessage() for r in cm.records]
        self.assertTrue(any("Kill cursors failed" in m for m in messages), messages)
        self.assertEqual(1, len(channel.commands_named("killCursors")))

    async def test_close_during_get_more(self):
        gated = Gated(get_more_reply(42, [{"_id": 1}]))
        channel = MockChannel(gated)
        cursor = make_cursor(channel, 42, [])
        task = asyncio.create_task(cursor.next_batch())
        await gated.sent.wait()
        self.assertEqual(CursorState.FETCHING, cursor.state)

        await cursor.close()
        await asyncio.sleep(0)
        self.assertEqual([], channel.killed)
        self.assertFalse(cursor.alive)

        gated.open()
        with self.assertRaises(CursorClosed):
            await task
        await self.wait_for_kills(cursor)
        self.assertEqual([42], channel.killed)
        self.assertEqual(CursorState.CLOSED, cursor.state)
        with self.assertRaises(CursorClosed):
            await cursor.next_batch()

    async def test_close_during_get_more_late_exhaustion(self):
        gated = Gated(get_more_reply(0, [{"_id": 1}]))
        channel = MockChannel(gated)
        cursor = make_cursor(channel, 42, [])
        task = asyncio.create_task(cursor.next_batch())
        await gated.sent.wait()
        await cursor.close()
        gated.open()
        with self.assertRaises(CursorClosed):
            await task
        await self.wait_for_kills(cursor)
        self.assertEqual([], channel.killed)

    async def test_close_during_failing_get_more(self):
        gated = Gated(TransportError("reset", retryable=True))
        channel = MockChannel(gated)
        cursor = make_cursor(channel, 42, [])
        task = asyncio.create_task(cursor.next_batch())
        await gated.sent.wait()
        await cursor.close()
        gated.open()
        with self.assertRaises(CursorClosed):
            await task
        await self.wait_for_kills(cursor)
        self.assertEqual(1, len(channel.commands))

    async def test_concurrent_next_batch_serialized(self):
        gated = Gated(get_more_reply(42, [{"_id": 1}]))
        channel = MockChannel(gated, get_more_reply(0, [{"_id": 2}]))
        cursor = make_cursor(channel, 42, [])
        first = asyncio.create_task(cursor.next_batch())
        second = asyncio.create_task(cursor.next_batch())
        await gated.sent.wait()
        for _ in range(5):
            await asyncio.sleep(0)
        # The second caller waits for the first getMore to complete.
        self.assertEqual(1, len(channel.get_mores))

        gated.open()
        self.assertEqual([{"_id": 1}], await first)
        self.assertEqual([{"_id": 2}], await second)
        self.assertEqual(2, len(channel.get_mores))
        self.assertEqual(1, channel.max_in_flight)
        with self.assertRaises(CursorClosed):
            await cursor.next_batch()

    async def test_cancellation_closes_cursor(self):
        gated = Gated(get_more_reply(42, [{"_id": 1}]))
        channel = MockChannel(gated)
        cursor = make_cursor(channel, 42, [])
        task = asyncio.create_task(cursor.next_batch())
        await gated.sent.wait()

        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task

        self.assertEqual(CursorState.CLOSED, cursor.state)
        await self.wait_for_kills(cursor)
        self.assertEqual([42], channel.killed)
        with self.assertRaises(CursorClosed):
            await cursor.next_batch()

    async def test_async_for(self):
        channel = MockChannel(get_more_reply(42, [{"_id": 2}]), get_more_reply(0, [{"_id": 3}]))
        cursor = make_cursor(channel, 42, [{"_id": 1}])
        batches = [batch async for batch in cursor]
        self.assertEqual([[{"_id": 1}], [{"_id": 2}], [{"_id": 3}]], batches)

    async def test_to_list(self):
        channel = MockChannel(get_more_reply(42, [3]), get_more_reply(0, [4]))
        cursor = make_cursor(channel, 42, [1, 2])
        self.assertEqual([1, 2, 3, 4], await cursor.to_list())
        self.assertEqual([], await cursor.to_list())

    async def test_to_list_length(self):
        cursor = make_cursor(MockChannel(), 0, [1, 2, 3])
        with self.assertRaises(ValueError):
            await cursor.to_list(0)
        self.assertEqual([1, 2], await cursor.to_list(2))
        self.assertEqual([3], await cursor.to_list())
        self.assertEqual([], await cursor.to_list())

    async def test_to_list_stops_on_empty_batch(self):
        channel = MockChannel(get_more_reply(42, []))
        cursor = make_cursor(channel, 42, [])
        self.assertEqual([], await cursor.to_list())
        self.assertEqual(1, len(channel.get_mores))
        self.assertTrue(cursor.alive)

    async def test_context_manager(self):
        channel = MockChannel()
        async with make_cursor(channel, 42, [{"_id": 1}]) as cursor:
            self.assertEqual([{"_id": 1}], await cursor.next_batch())
        await self.wait_for_kills(cursor)
        self.assertEqual([42], channel.killed)
        self.assertFalse(cursor.alive)

    async def test_post_batch_resume_token(self):
        channel = MockChannel(get_more_reply(42, [], post_batch_resume_token={"_data": "2"}))
        reply = cursor_reply(42, [], post_batch_resume_token={"_data": "1"})
        cursor = AsyncBatchCursor(channel, reply["cursor"])
        self.assertEqual({"_data": "1"}, cursor.post_batch_resume_token)
        await cursor.next_batch()
        self.assertEqual({"_data": "2"}, cursor.post_batch_resume_token)

    async def test_repr(self):
        cursor = make_cursor(MockChannel(), 42, [])
        self.assertEqual(
            "AsyncBatchCursor(ns='db.coll', state=_CursorStateMachine(id=42, state=fresh))",
            repr(cursor),
        )


if __name__ == "__main__":
    unittest.main()
