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

"""Options for the aggregate command."""
from __future__ import annotations

from collections import abc
from typing import Any, Mapping, Optional, Union

from pymongo.collation import Collation, validate_collation_or_none

from aggcursor import common
from aggcursor.errors import InvalidArgument

_CollationIn = Union[Mapping[str, Any], Collation]
_HintIn = Union[str, Mapping[str, Any], list, tuple]

# Server field name -> AggregateOptions attribute name.
_SERVER_NAMES = {
    "allowDiskUse": "allow_disk_use",
    "maxTimeMS": "max_time_ms",
    "maxAwaitTimeMS": "max_await_time_ms",
    "batchSize": "batch_size",
    "bypassDocumentValidation": "bypass_document_validation",
    "collation": "collation",
    "comment": "comment",
    "hint": "hint",
}
_OPTION_NAMES = frozenset(_SERVER_NAMES.values())


class AggregateOptions:
    """Immutable options for an aggregation.

    Every option defaults to ``None``, meaning it is left out of the
    aggregate command so that the server applies its own default.

    :param allow_disk_use: Enables writing to temporary files.
    :param max_time_ms: The maximum amount of time, in milliseconds, the
        server may spend executing the aggregate command.
    :param max_await_time_ms: The maximum amount of time, in milliseconds,
        a getMore against an empty, still-open cursor may wait for new data
        (tailable / change stream pipelines). ``0`` is treated as unset.
    :param batch_size: The number of documents to return per batch.
    :param bypass_document_validation: If ``True``, allows a pipeline that
        writes to a collection to opt-out of document level validation.
    :param collation: A :class:`~pymongo.collation.Collation` or an
        equivalent mapping.
    :param comment: A user-provided comment to attach to the aggregate and
        getMore commands.
    :param hint: An index name, an index document, or a list of
        (key, direction) pairs to use for the aggregation.
    """

    __slots__ = (
        "__allow_disk_use",
        "__max_time_ms",
        "__max_await_time_ms",
        "__batch_size",
        "__bypass_document_validation",
        "__collation",
        "__comment",
        "__hint",
    )

    def __init__(
        self,
        allow_disk_use: Optional[bool] = None,
        max_time_ms: Optional[int] = None,
        max_await_time_ms: Optional[int] = None,
        batch_size: Optional[int] = None,
        bypass_document_validation: Optional[bool] = None,
        collation: Optional[_CollationIn] = None,
        comment: Optional[str] = None,
        hint: Optional[_HintIn] = None,
    ) -> None:
        self.__allow_disk_use = common.validate_boolean_or_none("allow_disk_use", allow_disk_use)
        self.__max_time_ms = common.validate_non_negative_integer_or_none(
            "max_time_ms", max_time_ms
        )
        # A zero await time means "do not wait", the same as leaving it unset.
        self.__max_await_time_ms = (
            common.validate_non_negative_integer_or_none("max_await_time_ms", max_await_time_ms)
            or None
        )
        self.__batch_size = common.validate_positive_integer_or_none("batch_size", batch_size)
        self.__bypass_document_validation = common.validate_boolean_or_none(
            "bypass_document_validation", bypass_document_validation
        )
        if isinstance(collation, abc.Mapping) and not isinstance(collation, dict):
            collation = dict(collation)
        try:
            self.__collation = validate_collation_or_none(collation)
        except TypeError as exc:
            raise InvalidArgument(str(exc)) from None
        if self.__collation is not None:
            self.__collation = dict(self.__collation)
        self.__comment = common.validate_string_or_none("comment", comment)
        self.__hint = common.validate_hint_or_none("hint", hint)

    @classmethod
    def from_kwargs(cls, **kwargs: Any) -> AggregateOptions:
        """Create options from keyword arguments.

        Accepts the attribute names of this class as well as the aggregate
        command's own field names (``allowDiskUse``, ``maxTimeMS``,
        ``maxAwaitTimeMS``, ``batchSize``, ``bypassDocumentValidation``,
        ``collation``, ``comment`` and ``hint``).
        """
        options: dict[str, Any] = {}
        for key, value in kwargs.items():
            name = _SERVER_NAMES.get(key, key)
            if name not in _OPTION_NAMES:
                raise InvalidArgument(f"unknown aggregate option {key!r}")
            if name in options:
                raise InvalidArgument(f"aggregate option {key!r} given more than once")
            options[name] = value
        return cls(**options)

    def replace(self, **changes: Any) -> AggregateOptions:
        """Return a copy of these options with the given fields replaced.

        ``None`` unsets an option. This instance is left untouched.
        """
        current = self._asdict()
        for key, value in changes.items():
            name = _SERVER_NAMES.get(key, key)
            if name not in _OPTION_NAMES:
                raise InvalidArgument(f"unknown aggregate option {key!r}")
            current[name] = value
        return AggregateOptions(**current)

    def _asdict(self) -> dict[str, Any]:
        return {
            "allow_disk_use": self.__allow_disk_use,
            "max_time_ms": self.__max_time_ms,
            "max_await_time_ms": self.__max_await_time_ms,
            "batch_size": self.__batch_size,
            "bypass_document_validation": self.__bypass_document_validation,
            "collation": self.__collation,
            "comment": self.__comment,
            "hint": self.__hint,
        }

    @property
    def allow_disk_use(self) -> Optional[bool]:
        return self.__allow_disk_use

    @property
    def max_time_ms(self) -> Optional[int]:
        return self.__max_time_ms

    @property
    def max_await_time_ms(self) -> Optional[int]:
        return self.__max_await_time_ms

    @property
    def batch_size(self) -> Optional[int]:
        return self.__batch_size

    @property
    def bypass_document_validation(self) -> Optional[bool]:
        return self.__bypass_document_validation

    @property
    def collation(self) -> Optional[dict[str, Any]]:
        """The collation document, or ``None``."""
        return self.__collation

    @property
    def comment(self) -> Optional[str]:
        return self.__comment

    @property
    def hint(self) -> Optional[Union[str, Mapping[str, Any]]]:
        return self.__hint

    def command_fields(self) -> dict[str, Any]:
        """The aggregate command fields for the options that are set.

        ``batchSize`` belongs in the command's ``cursor`` sub-document and
        ``maxAwaitTimeMS`` only applies to getMore, so neither is included.
        """
        fields: dict[str, Any] = {}
        if self.__allow_disk_use is not None:
            fields["allowDiskUse"] = self.__allow_disk_use
        if self.__max_time_ms is not None:
            fields["maxTimeMS"] = self.__max_time_ms
        if self.__bypass_document_validation is not None:
            fields["bypassDocumentValidation"] = self.__bypass_document_validation
        if self.__collation is not None:
            fields["collation"] = self.__collation
        if self.__comment is not None:
            fields["comment"] = self.__comment
        if self.__hint is not None:
            fields["hint"] = self.__hint
        return fields

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, AggregateOptions):
            return self._asdict() == other._asdict()
        return NotImplemented

    def __ne__(self, other: Any) -> bool:
        return not self == other

    def __repr__(self) -> str:
        set_options = ", ".join(
            f"{key}={value!r}" for key, value in self._asdict().items() if value is not None
        )
        return f"AggregateOptions({set_options})"


DEFAULT_AGGREGATE_OPTIONS = AggregateOptions()
