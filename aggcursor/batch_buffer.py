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

"""Holder for the one batch of documents a cursor has not yet delivered."""
from __future__ import annotations

from collections import deque
from typing import Generic, Iterable

from aggcursor.typings import _DocumentType


class _BatchBuffer(Generic[_DocumentType]):
    """Owns one server batch at a time."""

    __slots__ = ("_data",)

    def __init__(self, batch: Iterable[_DocumentType] = ()) -> None:
        self._data: deque[_DocumentType] = deque(batch)

    def install(self, batch: Iterable[_DocumentType]) -> None:
        """Replace the buffered documents with `batch`.

        Callers only install after the previous batch was drained or
        discarded.
        """
        self._data = deque(batch)

    def drain_all(self) -> list[_DocumentType]:
        """Remove and return every buffered document."""
        batch = list(self._data)
        self._data.clear()
        return batch

    def discard(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __bool__(self) -> bool:
        return bool(self._data)

    def __repr__(self) -> str:
        return f"_BatchBuffer(<{len(self._data)} documents>)"
