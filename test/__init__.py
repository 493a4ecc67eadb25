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

"""Test suite for aggcursor."""
from __future__ import annotations

import unittest
from typing import Any

from bson.int64 import Int64


def cursor_reply(
    cursor_id: int,
    batch: list[Any],
    ns: str = "db.coll",
    first: bool = True,
    post_batch_resume_token: Any = None,
) -> dict[str, Any]:
    """A server reply to an aggregate (`first`) or getMore command."""
    cursor: dict[str, Any] = {
        "id": Int64(cursor_id),
        "ns": ns,
        "firstBatch" if first else "nextBatch": batch,
    }
    if post_batch_resume_token is not None:
        cursor["postBatchResumeToken"] = post_batch_resume_token
    return {"cursor": cursor, "ok": 1.0}


def get_more_reply(cursor_id: int, batch: list[Any], **kwargs: Any) -> dict[str, Any]:
    return cursor_reply(cursor_id, batch, first=False, **kwargs)


__all__ = ["unittest", "cursor_reply", "get_more_reply"]
