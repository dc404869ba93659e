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
Network management for the shared per-namespace bridge network.
"""
import logging
from typing import Optional

from ..DISPLAY.sink import DisplaySink, NullSink
from ..ENGINE.client import DockerEngine
from ..errors import EngineError, ResourceConflict
from ..MODELS.process_state import Operation, ProcessState, ResourceKind

logger = logging.getLogger(__name__)

DEFAULT_DRIVER = "bridge"


def is_already_exists(error: EngineError) -> bool:
    """Whether a create call failed only because the resource is already there."""
    return isinstance(error, ResourceConflict) or "already exists" in str(error)


class NetworkManager:
    """
    Creates the network every container of one environment joins.
    """

    def __init__(self, engine: DockerEngine, sink: Optional[DisplaySink] = None):
        """
        Initializes the network manager.

        :param engine: The Docker engine session.
        :param sink: Receives a status event when a network is created.
        """
        self.engine = engine
        self.sink = sink or NullSink()

    def ensure_network(self, name: str, driver: str = DEFAULT_DRIVER) -> None:
        """
        Makes sure a network called ``name`` exists.

        An existing network is left untouched. A concurrent caller creating
        the same network first is not an error.

        :param name: The network name, usually the namespace.
        :param driver: Driver used when the network has to be created.
        :raises EngineError: If listing or creating the network fails.
        """
        if name in self.engine.network_names():
            logger.debug("network %s already exists", name)
            return

        self.sink.post(ProcessState.initiating(name, ResourceKind.NETWORK, Operation.CREATE))
        try:
            self.engine.create_network(name, driver=driver)
        except EngineError as e:
            if not is_already_exists(e):
                self.sink.post(ProcessState.errored(name, ResourceKind.NETWORK, Operation.CREATE, e))
                raise
            logger.debug("network %s was created concurrently", name)
        self.sink.post(ProcessState.succeeded(name, ResourceKind.NETWORK, Operation.CREATE))
