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

"""Async aggregation executor, batch cursor and command channels."""
from __future__ import annotations

from aggcursor.asynchronous.aggregation import AsyncAggregateExecutor
from aggcursor.asynchronous.channel import AsyncCommandChannel, AsyncDatabaseChannel
from aggcursor.asynchronous.command_cursor import AsyncBatchCursor

__all__ = [
    "AsyncAggregateExecutor",
    "AsyncBatchCursor",
    "AsyncCommandChannel",
    "AsyncDatabaseChannel",
]
