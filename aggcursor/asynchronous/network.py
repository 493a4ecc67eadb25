# Copyright 2015-present MongoDB, Inc.
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

"""Internal network layer helper methods."""
from __future__ import annotations

import datetime
import logging
from typing import Any, Mapping, Optional

from aggcursor.asynchronous.channel import AsyncCommandChannel
from aggcursor.errors import CommandFailed
from aggcursor.logger import _COMMAND_LOGGER, _CommandStatusMessage, _debug_log
from aggcursor.message import _check_command_response, _convert_exception


async def command(
    channel: AsyncCommandChannel,
    spec: Mapping[str, Any],
    namespace: Optional[str] = None,
) -> Mapping[str, Any]:
    """Send a command over `channel` and return the checked reply.

    :param channel: the channel to send the command through.
    :param spec: the command document. Its first key names the command.
    :param namespace: the namespace the command targets, for logging.
    """
    name = next(iter(spec))
    start = datetime.datetime.now()
    if _COMMAND_LOGGER.isEnabledFor(logging.DEBUG):
        _debug_log(
            _COMMAND_LOGGER,
            message=_CommandStatusMessage.STARTED,
            command=spec,
            commandName=name,
            namespace=namespace,
        )
    try:
        reply = await channel.send(spec)
        _check_command_response(reply)
    except Exception as exc:
        duration = datetime.datetime.now() - start
        if isinstance(exc, CommandFailed) and exc.details is not None:
            failure: Mapping[str, Any] = exc.details
        else:
            failure = _convert_exception(exc)
        if _COMMAND_LOGGER.isEnabledFor(logging.DEBUG):
            _debug_log(
                _COMMAND_LOGGER,
                message=_CommandStatusMessage.FAILED,
                durationMS=duration,
                failure=failure,
                commandName=name,
                namespace=namespace,
                isServerSideError=isinstance(exc, CommandFailed),
            )
        raise
    duration = datetime.datetime.now() - start
    if _COMMAND_LOGGER.isEnabledFor(logging.DEBUG):
        _debug_log(
            _COMMAND_LOGGER,
            message=_CommandStatusMessage.SUCCEEDED,
            durationMS=duration,
            reply=reply,
            commandName=name,
            namespace=namespace,
        )
    return reply
