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

"""Asynchronous test suite for aggcursor."""
from __future__ import annotations

import asyncio
import unittest
from typing import Any


class AsyncAggCursorTestCase(unittest.IsolatedAsyncioTestCase):
    async def wait_for_kills(self, cursor: Any) -> None:
        """Wait for the background killCursors tasks of `cursor` to finish."""
        # Let tasks created by the last step start running.
        await asyncio.sleep(0)
        while cursor._kill_tasks:
            await asyncio.gather(*list(cursor._kill_tasks))
