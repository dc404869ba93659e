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
Exception hierarchy for World CLI.

Construction problems (bad ports, a descriptor without an image) are plain
``ValueError`` and never pass through this module.
"""
from typing import List, Optional, Tuple


class WorldCLIError(Exception):
    """Base class for every error raised by the orchestration engine."""


class ConfigError(WorldCLIError):
    """The world.toml configuration could not be found or is invalid."""


class EngineError(WorldCLIError):
    """
    A call to the Docker engine failed.

    The message names the operation and the resource so that several of these
    can be listed together without losing track of which call failed.
    """

    def __init__(self, operation: str, resource: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.resource = resource
        self.cause = cause
        message = f"Failed to {operation} {resource}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class BuildLogError(WorldCLIError):
    """The build output reported a failure or could not be decoded."""


class ImageTransferError(WorldCLIError):
    """A pull or push stream reported a failure."""


class FrameDecodeError(WorldCLIError):
    """A multiplexed log stream ended in the middle of a frame."""


class OperationCancelled(WorldCLIError):
    """The governing context was cancelled while an operation was running."""


class AggregatedError(WorldCLIError):
    """
    One error carrying every failure of a batch operation.

    :param summary: Short description of the batch, e.g. "Failed to start containers".
    :param failures: (name, exception) pairs, one per failing resource.
    """

    def __init__(self, summary: str, failures: List[Tuple[str, BaseException]]):
        self.summary = summary
        self.failures = list(failures)
        super().__init__(self._format())

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self.failures]

    def _format(self) -> str:
        lines = [f"{self.summary} ({len(self.failures)} failed):"]
        for name, err in self.failures:
            lines.append(f"  - {name}: {err}")
        return "\n".join(lines)


class ResourceConflict(EngineError):
    """The engine refused to create a resource because it already exists."""


class ResourceNotFound(EngineError):
    """The engine has no resource with the requested name."""
