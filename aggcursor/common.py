# Copyright 2011-present MongoDB, Inc.
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


"""Functions and classes common to multiple modules."""
from __future__ import annotations

from collections import abc
from typing import Any, Mapping, Optional, Sequence, Union

from aggcursor.errors import InvalidArgument

# Stages that write the pipeline's results to a collection instead of
# returning them through a cursor.
_OUTPUT_STAGES = frozenset(["$out", "$merge"])


def validate_boolean_or_none(option: str, value: Any) -> Optional[bool]:
    """Validates that 'value' is True, False or None."""
    if value is None or isinstance(value, bool):
        return value
    raise InvalidArgument(f"{option} must be True, False or None, not {type(value)}")


def validate_integer(option: str, value: Any) -> int:
    """Validates that 'value' is an integer."""
    # bool is an int subclass but never a meaningful count or duration.
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise InvalidArgument(f"{option} must be an integer, not {type(value)}")


def validate_positive_integer_or_none(option: str, value: Any) -> Optional[int]:
    """Validate that 'value' is a positive integer or None."""
    if value is None:
        return value
    val = validate_integer(option, value)
    if val <= 0:
        raise InvalidArgument(f"{option} must be a positive integer, not {value!r}")
    return val


def validate_non_negative_integer_or_none(option: str, value: Any) -> Optional[int]:
    """Validate that 'value' is a positive integer or 0 or None."""
    if value is None:
        return value
    val = validate_integer(option, value)
    if val < 0:
        raise InvalidArgument(f"{option} must be a non negative integer, not {value!r}")
    return val


def validate_string_or_none(option: str, value: Any) -> Optional[str]:
    """Validates that 'value' is an instance of `str` or `None`."""
    if value is None or isinstance(value, str):
        return value
    raise InvalidArgument(f"{option} must be an instance of str or None, not {type(value)}")


def validate_hint_or_none(option: str, value: Any) -> Optional[Union[str, Mapping[str, Any]]]:
    """Validates an index name, an index document, or a list of
    (key, direction) pairs, returning a name or an index document.
    """
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, abc.Mapping):
        return dict(value)
    if isinstance(value, (list, tuple)):
        return _index_document(option, value)
    raise InvalidArgument(
        f"{option} must be an index name, an index document, or a list of "
        f"(key, direction) pairs, not {type(value)}"
    )


def _index_document(option: str, index_list: Sequence[Any]) -> dict[str, Any]:
    """Helper to generate an index specifying document.

    Takes a list of (key, direction) pairs.
    """
    if not index_list:
        raise InvalidArgument(f"{option} must not be an empty list")
    index: dict[str, Any] = {}
    for item in index_list:
        if not isinstance(item, (list, tuple)) or len(item) != 2:
            raise InvalidArgument(f"{option} must be a list of (key, direction) pairs")
        key, value = item
        if not isinstance(key, str):
            raise InvalidArgument(f"first item in each {option} pair must be a str")
        index[key] = value
    return index


def validate_pipeline(pipeline: Any) -> list[Mapping[str, Any]]:
    """Validates an aggregation pipeline and returns a private copy of it."""
    if isinstance(pipeline, (str, bytes)) or not isinstance(pipeline, abc.Sequence):
        raise InvalidArgument(f"pipeline must be a list, not {type(pipeline)}")
    stages = list(pipeline)
    if not stages:
        raise InvalidArgument("pipeline must not be empty")
    for index, stage in enumerate(stages):
        if not isinstance(stage, abc.Mapping):
            raise InvalidArgument(
                f"pipeline stage {index} must be a mapping, not {type(stage)}"
            )
    return stages


def has_output_stage(pipeline: Sequence[Mapping[str, Any]]) -> bool:
    """Return True if the pipeline ends with a stage that writes its
    results to a collection.
    """
    if not pipeline:
        return False
    last = pipeline[-1]
    return bool(last) and next(iter(last)) in _OUTPUT_STAGES
