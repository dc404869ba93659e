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
Shared fixtures: an in-memory stand-in for the Docker engine and a sink that
records every status event.
"""
import io
import threading
from typing import Dict, List, Optional

import pytest

from worldcli.ENGINE.client import EngineStream
from worldcli.errors import EngineError, ResourceConflict, ResourceNotFound
from worldcli.MODELS.process_state import Phase
from worldcli.MODELS.runtime_config import RuntimeConfig


class FakeLogStream:
    """Mimics ``LogStream``: a binary reader plus ``interrupt`` and ``close``."""

    def __init__(self, data: bytes):
        self.reader = io.BytesIO(data)
        self.interrupted = False
        self.closed = False

    def interrupt(self):
        self.interrupted = True

    def close(self):
        self.closed = True


class FakeEngine:
    """
    Keeps containers, networks, volumes and images in dictionaries and
    records every mutating call in ``calls`` as ``(operation, name)``.

    ``fail`` maps an operation name (``"start"``, ``"create_network"``...) to
    the resource names that should raise an :class:`EngineError`.
    """

    def __init__(self, buildkit_enabled: bool = False):
        self.buildkit_enabled = buildkit_enabled
        self.containers: Dict[str, Dict[str, object]] = {}
        self.networks: List[str] = []
        self.volumes: List[str] = []
        self.images: set = set()
        self.tags: List[tuple] = []
        self.fail: Dict[str, set] = {}
        self.calls: List[tuple] = []
        self.pull_events: Dict[str, list] = {}
        self.push_events: Dict[str, list] = {}
        self.build_events: Dict[str, list] = {}
        self.build_contexts: Dict[str, bytes] = {}
        self.log_data: Dict[str, bytes] = {}
        self.log_attaches: List[tuple] = []
        self.exec_results: list = []
        self.closed = False
        self._lock = threading.Lock()

    def _record(self, operation: str, name: str) -> None:
        with self._lock:
            self.calls.append((operation, name))
        if name in self.fail.get(operation, ()):
            raise EngineError(operation, name, RuntimeError("boom"))

    def calls_for(self, operation: str) -> List[str]:
        return [name for op, name in self.calls if op == operation]

    def close(self):
        self.closed = True

    # Containers

    def container_exists(self, name: str) -> bool:
        return name in self.containers

    def container_running(self, name: str) -> bool:
        return bool(self.containers.get(name, {}).get("running"))

    def create_container(self, service) -> str:
        self._record("create", service.name)
        if service.name in self.containers:
            raise ResourceConflict("create container", service.name, RuntimeError("already in use"))
        self.containers[service.name] = {"running": False, "service": service}
        return service.name

    def start_container(self, name: str) -> None:
        self._record("start", name)
        if name not in self.containers:
            raise ResourceNotFound("start container", name, RuntimeError("no such container"))
        self.containers[name]["running"] = True

    def stop_container(self, name: str, timeout: Optional[int] = None) -> None:
        self._record("stop", name)
        if name not in self.containers:
            raise ResourceNotFound("stop container", name, RuntimeError("no such container"))
        self.containers[name]["running"] = False

    def remove_container(self, name: str) -> None:
        self._record("remove", name)
        if self.containers.pop(name, None) is None:
            raise ResourceNotFound("remove container", name, RuntimeError("no such container"))

    def open_log_stream(self, name: str, since: Optional[int] = None) -> FakeLogStream:
        with self._lock:
            self.log_attaches.append((name, since))
        # a re-attach only sees lines written after ``since``
        return FakeLogStream(self.log_data.get(name, b"") if since is None else b"")

    def exec_output(self, container: str, cmd: List[str]) -> str:
        self._record("exec", container)
        result = self.exec_results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result

    # Networks

    def network_names(self) -> List[str]:
        return list(self.networks)

    def create_network(self, name: str, driver: str = "bridge") -> None:
        self._record("create_network", name)
        if name in self.networks:
            raise ResourceConflict("create network", name, RuntimeError(f"network with name {name} already exists"))
        self.networks.append(name)

    # Volumes

    def volume_names(self) -> List[str]:
        return list(self.volumes)

    def create_volume(self, name: str) -> None:
        self._record("create_volume", name)
        self.volumes.append(name)

    def remove_volume(self, name: str) -> None:
        self._record("remove_volume", name)
        if name not in self.volumes:
            raise ResourceNotFound("remove volume", name, RuntimeError("no such volume"))
        self.volumes.remove(name)

    # Images

    def image_exists(self, image: str) -> bool:
        return image in self.images

    def pull_image(self, image: str, platform: Optional[str] = None) -> EngineStream:
        self._record("pull", image)
        events = self.pull_events.get(image, [{"status": "Pull complete"}])
        if not any("error" in event for event in events):
            self.images.add(image)
        return EngineStream(iter(events))

    def tag_image(self, image: str, repository: str, tag: Optional[str] = None) -> None:
        self._record("tag", image)
        self.tags.append((image, repository, tag))

    def push_image(self, repository: str, tag: Optional[str] = None,
                   auth_config: Optional[Dict[str, str]] = None) -> EngineStream:
        self._record("push", f"{repository}:{tag}")
        return EngineStream(iter(self.push_events.get(repository, [{"status": "Pushed"}])))

    def build_image(self, context: bytes, tag: str, target: str = "",
                    buildargs: Optional[Dict[str, str]] = None) -> EngineStream:
        self._record("build", tag)
        self.build_contexts[tag] = context
        events = self.build_events.get(tag, [{"stream": "Step 1/1 : FROM scratch\n"}])
        if not any("error" in event for event in events):
            self.images.add(tag)
        return EngineStream(iter(events))


class RecordingSink:
    """Collects every posted status event."""

    def __init__(self):
        self.states = []
        self._lock = threading.Lock()

    def post(self, state):
        with self._lock:
            self.states.append(state)

    def finished(self, name):
        return [state for state in self.states if state.name == name and state.phase is Phase.FINISHED]

    def for_name(self, name):
        return [state for state in self.states if state.name == name]


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def config(tmp_path):
    return RuntimeConfig(root_dir=str(tmp_path), env={"CARDINAL_NAMESPACE": "testns"})
