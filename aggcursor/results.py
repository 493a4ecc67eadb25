# Copyright 2015-present MongoDB, Inc.
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

"""Result class definitions."""
from __future__ import annotations

from collections import abc
from typing import Any, Mapping, Optional


class AggregateOutputResult:
    """The completion signal of a pipeline ending with ``$out`` or ``$merge``.

    Such a pipeline writes its results to a collection, so no cursor is
    created. A failed aggregation raises instead of returning this.
    """

    __slots__ = ("__raw_result", "__output_stage")

    def __init__(self, raw_result: Mapping[str, Any], output_stage: Mapping[str, Any]) -> None:
        self.__raw_result = raw_result
        self.__output_stage = output_stage

    @property
    def acknowledged(self) -> bool:
        """Always ``True``: the server reported success."""
        return True

    @property
    def raw_result(self) -> Mapping[str, Any]:
        """The raw aggregate reply returned by the server."""
        return self.__raw_result

    @property
    def output_stage(self) -> Mapping[str, Any]:
        """The ``$out`` or ``$merge`` stage that produced this result."""
        return self.__output_stage

    @property
    def target(self) -> Optional[Any]:
        """The collection the stage wrote to, as given in the stage."""
        spec = next(iter(self.__output_stage.values()))
        if isinstance(spec, abc.Mapping):
            return spec.get("into", spec.get("coll"))
        return spec

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.__raw_result!r})"
