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
Builds the images of services that carry their own Dockerfile.
"""
import logging
from typing import List, Optional

from ..DISPLAY.sink import DisplaySink, NullSink
from ..ENGINE.client import DockerEngine
from ..MANAGERS.container_manager import ContainerManager
from ..MODELS.process_state import Operation, ProcessState, ResourceKind
from ..MODELS.service_definition import ServiceDescriptor
from ..RUNNERS.batch_runner import BatchRunner
from ..UTILS.cancellation import CancelToken
from .build_context import create_build_context
from .build_log_parser import parse_build_line

logger = logging.getLogger(__name__)


class ImageBuilder:
    """
    Builds service images concurrently, reporting the current build step of
    each image to the display sink.
    """

    def __init__(self, engine: DockerEngine, root_dir: str, sink: Optional[DisplaySink] = None,
                 containers: Optional[ContainerManager] = None):
        """
        Initializes the ImageBuilder.

        :param engine: The Docker engine session; its ``buildkit_enabled``
            decides which build protocol is used.
        :param root_dir: The project root the build context is taken from.
        :param sink: Receives build status events.
        :param containers: Used to remove stale containers before a rebuild.
        """
        self.engine = engine
        self.root_dir = root_dir
        self.sink = sink or NullSink()
        self.containers = containers or ContainerManager(engine, self.sink)

    def build_all(self, services: List[ServiceDescriptor], token: Optional[CancelToken] = None) -> None:
        """
        Builds every service that has a Dockerfile; the others are skipped.

        :raises AggregatedError: Naming every image whose build failed.
        """
        token = token or CancelToken()
        to_build = [service for service in services if service.needs_build]
        BatchRunner(self.sink, token).run(
            to_build, lambda service: self.build(service, token),
            ResourceKind.IMAGE, Operation.BUILD, "Failed to build images",
            name_of=lambda service: service.image,
        )

    def build(self, service: ServiceDescriptor, token: CancelToken) -> None:
        """
        Builds one image.

        A container left over from a previous run is removed first, so it
        does not keep the old image in use.

        :raises BuildLogError: If the build output reports an error.
        :raises EngineError: If the engine call fails.
        """
        self.containers.remove_one(service)

        dockerfile = service.dockerfile.render(buildkit=self.engine.buildkit_enabled)
        context = create_build_context(self.root_dir, dockerfile)
        logger.debug("building %s (target %s, buildkit=%s)", service.image,
                     service.dockerfile.target or "<last>", self.engine.buildkit_enabled)

        stream = self.engine.build_image(context, service.image, service.dockerfile.target)
        for message in stream.follow(token, "build image", service.image):
            step = parse_build_line(message)
            if step:
                self.sink.post(ProcessState.in_progress(service.image, ResourceKind.IMAGE,
                                                        Operation.BUILD, detail=step))
