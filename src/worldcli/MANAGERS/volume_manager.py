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
Volume management for the shared per-namespace data volume.
"""
import logging
from typing import Optional

from ..DISPLAY.sink import DisplaySink, NullSink
from ..ENGINE.client import DockerEngine
from ..errors import EngineError, ResourceNotFound
from ..MODELS.process_state import Operation, ProcessState, ResourceKind
from .network_manager import is_already_exists

logger = logging.getLogger(__name__)


class VolumeManager:
    """
    Creates and removes the named volume holding an environment's data.

    :param engine: The Docker engine session.
    :param sink: Receives status events for volumes created or removed.
    """

    def __init__(self, engine: DockerEngine, sink: Optional[DisplaySink] = None):
        self.engine = engine
        self.sink = sink or NullSink()

    def ensure_volume(self, name: str) -> None:
        """
        Makes sure a volume called ``name`` exists, creating it when missing.

        :raises EngineError: If listing or creating the volume fails.
        """
        if name in self.engine.volume_names():
            logger.debug("volume %s already exists", name)
            return

        self.sink.post(ProcessState.initiating(name, ResourceKind.VOLUME, Operation.CREATE))
        try:
            self.engine.create_volume(name)
        except EngineError as e:
            if not is_already_exists(e):
                self.sink.post(ProcessState.errored(name, ResourceKind.VOLUME, Operation.CREATE, e))
                raise
            logger.debug("volume %s was created concurrently", name)
        self.sink.post(ProcessState.succeeded(name, ResourceKind.VOLUME, Operation.CREATE))

    def remove_volume(self, name: str) -> None:
        """
        Removes the volume ``name``. A volume that does not exist counts as removed.

        :raises EngineError: If the engine refuses to remove the volume.
        """
        if name not in self.engine.volume_names():
            logger.debug("volume %s does not exist, nothing to remove", name)
            return

        self.sink.post(ProcessState.initiating(name, ResourceKind.VOLUME, Operation.REMOVE))
        try:
            self.engine.remove_volume(name)
        except ResourceNotFound:
            pass
        except EngineError as e:
            self.sink.post(ProcessState.errored(name, ResourceKind.VOLUME, Operation.REMOVE, e))
            raise
        self.sink.post(ProcessState.succeeded(name, ResourceKind.VOLUME, Operation.REMOVE))
