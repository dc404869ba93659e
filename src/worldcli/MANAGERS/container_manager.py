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
Container lifecycle: start, stop and remove batches of service containers.
"""
import logging
from typing import List, Optional

from ..DISPLAY.sink import DisplaySink, NullSink
from ..ENGINE.client import DockerEngine
from ..errors import ResourceNotFound
from ..MODELS.process_state import Operation, ResourceKind
from ..MODELS.service_definition import ServiceDescriptor
from ..RUNNERS.batch_runner import BatchRunner
from ..UTILS.cancellation import CancelToken

logger = logging.getLogger(__name__)


class ContainerManager:
    """
    Runs lifecycle operations on many containers at once.

    Every method fans out one task per service, reports each task to the
    display sink and raises :class:`~worldcli.errors.AggregatedError` naming
    every service that failed.
    """

    def __init__(self, engine: DockerEngine, sink: Optional[DisplaySink] = None, timeout: int = 10):
        """
        Initializes the container manager.

        :param engine: The Docker engine session.
        :param sink: Receives per-container status events.
        :param timeout: Seconds a container gets to stop before it is killed;
            zero or less uses the engine default.
        """
        self.engine = engine
        self.sink = sink or NullSink()
        self.timeout = timeout

    def _runner(self, token: Optional[CancelToken]) -> BatchRunner:
        return BatchRunner(self.sink, token)

    def start(self, services: List[ServiceDescriptor], token: Optional[CancelToken] = None) -> None:
        """
        Creates missing containers and starts all of them.
        """
        self._runner(token).run(services, self.start_one, ResourceKind.CONTAINER,
                                Operation.START, "Failed to start containers")

    def stop(self, services: List[ServiceDescriptor], token: Optional[CancelToken] = None) -> None:
        """
        Stops every container; ones that do not exist are already stopped.
        """
        self._runner(token).run(services, self.stop_one, ResourceKind.CONTAINER,
                                Operation.STOP, "Failed to stop containers")

    def remove(self, services: List[ServiceDescriptor], token: Optional[CancelToken] = None) -> None:
        """
        Stops and removes every container; ones that do not exist are skipped.
        """
        self._runner(token).run(services, self.remove_one, ResourceKind.CONTAINER,
                                Operation.REMOVE, "Failed to remove containers")

    def start_one(self, service: ServiceDescriptor) -> None:
        if not self.engine.container_exists(service.name):
            logger.debug("creating container %s from %s", service.name, service.image)
            self.engine.create_container(service)
        self.engine.start_container(service.name)

    def stop_one(self, service: ServiceDescriptor) -> None:
        if not self.engine.container_exists(service.name):
            logger.debug("container %s does not exist, nothing to stop", service.name)
            return
        try:
            self.engine.stop_container(service.name, self.timeout)
        except ResourceNotFound:
            logger.debug("container %s disappeared before it was stopped", service.name)

    def remove_one(self, service: ServiceDescriptor) -> None:
        if not self.engine.container_exists(service.name):
            logger.debug("container %s does not exist, nothing to remove", service.name)
            return
        try:
            if self.engine.container_running(service.name):
                self.engine.stop_container(service.name, self.timeout)
            self.engine.remove_container(service.name)
        except ResourceNotFound:
            logger.debug("container %s disappeared before it was removed", service.name)
