# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Parsing of the JSON messages the engine streams back while building,
pulling and pushing images.

Each raw message is decoded once into a typed event; :func:`parse_step`
then turns build events into a single human readable "current step".
"""
import json
from typing import Any, Optional, Union

from ..errors import BuildLogError
from ..MODELS.build_events import (BuildEvent, BuildkitTraceEvent, ErrorEvent, IgnoredEvent,
                                   LegacyStreamEvent, StatusEvent)
from .buildkit_trace import TRACE_ID, current_step, decode_trace

# Legacy builder lines worth showing besides "Step N/M"
PROGRESS_KEYWORDS = ("Pulling", "Building", "Running", "Executing", "Successfully")


def _to_int(value: Any) -> Optional[int]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    return None


def decode_event(message: Union[dict, str, bytes]) -> BuildEvent:
    """
    Decodes one engine message.

    :param message: A decoded JSON object, or the raw JSON text of one.
    :raises BuildLogError: If the text is not valid JSON or a trace payload is corrupt.
    """
    if isinstance(message, (str, bytes)):
        try:
            message = json.loads(message)
        except ValueError as e:
            raise BuildLogError(f"malformed build output: {e}") from e

    if not isinstance(message, dict):
        return IgnoredEvent()

    detail = message.get("errorDetail")
    if isinstance(detail, dict) and detail.get("message"):
        return ErrorEvent(message=str(detail["message"]))
    if message.get("error"):
        return ErrorEvent(message=str(message["error"]))

    if message.get("id") == TRACE_ID and "aux" in message:
        return decode_trace(message["aux"])

    if "stream" in message:
        return LegacyStreamEvent(text=str(message["stream"]))

    if "status" in message:
        progress = message.get("progressDetail") or {}
        return StatusEvent(
            status=str(message["status"]),
            layer_id=message.get("id"),
            current=_to_int(progress.get("current")),
            total=_to_int(progress.get("total")),
        )

    return IgnoredEvent()


def parse_legacy_line(text: str) -> Optional[str]:
    stripped = text.strip()
    if stripped.startswith("Step"):
        return stripped
    if stripped.startswith("DEBUG:") or any(keyword in stripped for keyword in PROGRESS_KEYWORDS):
        return stripped
    return None


def parse_step(event: BuildEvent) -> Optional[str]:
    """
    Extracts the step to display from a build event.

    :return: The step text, or None when the event has nothing to show.
    :raises BuildLogError: If the event reports a build failure.
    """
    if isinstance(event, ErrorEvent):
        raise BuildLogError(event.message)
    if isinstance(event, BuildkitTraceEvent):
        return current_step(event)
    if isinstance(event, LegacyStreamEvent):
        return parse_legacy_line(event.text)
    if isinstance(event, StatusEvent):
        return event.status
    return None


def parse_build_line(message: Union[dict, str, bytes]) -> Optional[str]:
    """Shortcut for ``parse_step(decode_event(message))``."""
    return parse_step(decode_event(message))
