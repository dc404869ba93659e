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
Status events emitted while lifecycle operations run.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ResourceKind(str, Enum):
    """Kind of engine resource an event is about."""

    CONTAINER = "container"
    IMAGE = "image"
    NETWORK = "network"
    VOLUME = "volume"


class Phase(str, Enum):
    """Where an operation on one resource currently is."""

    INITIATING = "initiating"
    IN_PROGRESS = "in-progress"
    FINISHED = "finished"


class Operation(str, Enum):
    """Operations the engine performs on resources."""

    START = "start"
    STOP = "stop"
    REMOVE = "remove"
    CREATE = "create"
    BUILD = "build"
    PULL = "pull"
    PUSH = "push"

    @property
    def ongoing(self) -> str:
        return _ONGOING[self]

    @property
    def finished(self) -> str:
        return _FINISHED[self]


_ONGOING = {
    Operation.START: "starting",
    Operation.STOP: "stopping",
    Operation.REMOVE: "removing",
    Operation.CREATE: "creating",
    Operation.BUILD: "building",
    Operation.PULL: "pulling",
    Operation.PUSH: "pushing",
}

_FINISHED = {
    Operation.START: "started",
    Operation.STOP: "stopped",
    Operation.REMOVE: "removed",
    Operation.CREATE: "created",
    Operation.BUILD: "built",
    Operation.PULL: "pulled",
    Operation.PUSH: "pushed",
}


@dataclass(frozen=True)
class ProcessState:
    """
    One status update for one resource.

    Only the final event of an operation has ``phase == Phase.FINISHED``;
    ``failed`` tells the sink whether it ended in error, in which case
    ``detail`` carries the error message.
    """

    name: str
    kind: ResourceKind
    operation: Operation
    phase: Phase
    detail: Optional[str] = None
    failed: bool = False
    progress: Optional[int] = None

    @property
    def done(self) -> bool:
        return self.phase is Phase.FINISHED

    @property
    def label(self) -> str:
        if self.done and not self.failed:
            return self.operation.finished
        return self.operation.ongoing

    @classmethod
    def initiating(cls, name: str, kind: ResourceKind, operation: Operation) -> "ProcessState":
        return cls(name=name, kind=kind, operation=operation, phase=Phase.INITIATING)

    @classmethod
    def succeeded(cls, name: str, kind: ResourceKind, operation: Operation) -> "ProcessState":
        return cls(name=name, kind=kind, operation=operation, phase=Phase.FINISHED)

    @classmethod
    def errored(cls, name: str, kind: ResourceKind, operation: Operation,
                error: BaseException) -> "ProcessState":
        return cls(name=name, kind=kind, operation=operation, phase=Phase.FINISHED,
                   detail=str(error), failed=True)

    @classmethod
    def in_progress(cls, name: str, kind: ResourceKind, operation: Operation,
                    detail: Optional[str] = None, progress: Optional[int] = None) -> "ProcessState":
        return cls(name=name, kind=kind, operation=operation, phase=Phase.IN_PROGRESS,
                   detail=detail, progress=progress)

    @classmethod
    def cancelled(cls, name: str, kind: ResourceKind, operation: Operation) -> "ProcessState":
        return cls(name=name, kind=kind, operation=operation, phase=Phase.FINISHED,
                   detail="cancelled", failed=True)
