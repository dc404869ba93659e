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
Pulls the images a set of services needs and does not have yet.
"""
import logging
from typing import Dict, List, Optional, Set, Tuple

from ..BUILDERS.build_log_parser import decode_event
from ..DISPLAY.sink import DisplaySink, NullSink
from ..ENGINE.client import DockerEngine
from ..errors import ImageTransferError
from ..MODELS.build_events import ErrorEvent, StatusEvent
from ..MODELS.process_state import Operation, ProcessState, ResourceKind
from ..MODELS.service_definition import ServiceDescriptor
from ..RUNNERS.batch_runner import BatchRunner
from ..UTILS.cancellation import CancelToken
from .progress import ProgressTracker

logger = logging.getLogger(__name__)


def filter_images(engine: DockerEngine, services: List[ServiceDescriptor]) -> Dict[str, Optional[str]]:
    """
    Collects the images that have to be pulled, walking every service's
    dependencies recursively.

    Services that are built locally are not pulled themselves, but their
    base images are. Images already present are skipped.

    :param engine: Used to check which images exist locally.
    :param services: The services about to run.
    :return: Image reference to requested platform (or None), without duplicates.
    :raises ValueError: If the dependency graph has a cycle.
    """
    images: Dict[str, Optional[str]] = {}
    checked: Set[str] = set()

    def visit(service: ServiceDescriptor, processing: Tuple[str, ...]) -> None:
        if service.name in processing:
            raise ValueError(f"Circular dependency detected involving {service.name}")
        for dependency in service.dependencies:
            visit(dependency, processing + (service.name,))

        if service.needs_build or service.image in checked:
            return
        checked.add(service.image)
        if engine.image_exists(service.image):
            logger.debug("image %s already present", service.image)
            return
        images[service.image] = service.platform

    for service in services:
        visit(service, ())
    return images


class ImagePuller:
    """
    Pulls missing images concurrently with per-image progress.
    """

    def __init__(self, engine: DockerEngine, sink: Optional[DisplaySink] = None):
        """
        Initializes the image puller.

        :param engine: The Docker engine session.
        :param sink: Receives pull progress events.
        """
        self.engine = engine
        self.sink = sink or NullSink()

    def pull_missing(self, services: List[ServiceDescriptor], token: Optional[CancelToken] = None) -> None:
        """
        Pulls every image ``services`` need that is not present locally.
        A failing pull does not stop the others.

        :raises AggregatedError: Naming every image that failed to pull.
        """
        token = token or CancelToken()
        images = list(filter_images(self.engine, services).items())
        BatchRunner(self.sink, token).run(
            images, lambda item: self.pull(item[0], item[1], token),
            ResourceKind.IMAGE, Operation.PULL, "Failed to pull images",
            name_of=lambda item: item[0],
        )

    def pull(self, image: str, platform: Optional[str], token: CancelToken) -> None:
        """
        Pulls one image.

        :raises ImageTransferError: If the pull stream reports an error.
        """
        tracker = ProgressTracker()
        stream = self.engine.pull_image(image, platform)
        for message in stream.follow(token, "pull image", image):
            event = decode_event(message)
            if isinstance(event, ErrorEvent):
                raise ImageTransferError(f"Failed to pull image {image}: {event.message}")
            if isinstance(event, StatusEvent) and event.total:
                previous = tracker.current
                if tracker.update(event.current, event.total) != previous:
                    self.sink.post(ProcessState.in_progress(image, ResourceKind.IMAGE, Operation.PULL,
                                                            progress=tracker.current))
        self.sink.post(ProcessState.in_progress(image, ResourceKind.IMAGE, Operation.PULL,
                                                progress=tracker.finish()))
