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
Typed views of the JSON messages the engine streams back from build, pull
and push calls. Each raw message is decoded once into one of these classes.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Union


@dataclass(frozen=True)
class ErrorEvent:
    """An ``error`` or ``errorDetail.message`` field; always terminal."""
    message: str


@dataclass(frozen=True)
class LegacyStreamEvent:
    """A ``{"stream": ...}`` line from the classic builder."""
    text: str


@dataclass(frozen=True)
class StatusEvent:
    """A ``{"status": ...}`` line, optionally with byte counters."""
    status: str
    layer_id: Optional[str] = None
    current: Optional[int] = None
    total: Optional[int] = None


@dataclass(frozen=True)
class Vertex:
    """One BuildKit graph vertex (a build step)."""
    digest: str = ""
    name: str = ""
    cached: bool = False
    error: str = ""


@dataclass(frozen=True)
class BuildkitTraceEvent:
    """A ``moby.buildkit.trace`` message with its decoded vertices."""
    vertices: List[Vertex] = field(default_factory=list)


@dataclass(frozen=True)
class IgnoredEvent:
    """Anything this tool does not need to understand."""


BuildEvent = Union[ErrorEvent, LegacyStreamEvent, StatusEvent, BuildkitTraceEvent, IgnoredEvent]
