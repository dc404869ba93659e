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
Pushes locally built images to a registry.
"""
import base64
import binascii
import json
import logging
from typing import Dict, List, Optional

from ..BUILDERS.build_log_parser import decode_event
from ..DISPLAY.sink import DisplaySink, NullSink
from ..ENGINE.client import DockerEngine
from ..errors import ImageTransferError
from ..MODELS.build_events import ErrorEvent, StatusEvent
from ..MODELS.process_state import Operation, ProcessState, ResourceKind
from ..MODELS.service_definition import ServiceDescriptor
from ..RUNNERS.batch_runner import BatchRunner
from ..UTILS.cancellation import CancelToken
from .image_reference import ImageReference
from .progress import ProgressTracker

logger = logging.getLogger(__name__)


def registry_auth(token: Optional[str]) -> Optional[Dict[str, str]]:
    """
    Turns the ``--push-auth`` value into the engine's auth config.

    The value is either an already encoded registry auth header (base64 JSON)
    or a bare registry token.
    """
    if not token:
        return None
    try:
        decoded = json.loads(base64.urlsafe_b64decode(token + "=" * (-len(token) % 4)))
    except (binascii.Error, ValueError):
        decoded = None
    if isinstance(decoded, dict):
        return {str(key): str(value) for key, value in decoded.items()}
    return {"registrytoken": token}


class ImagePusher:
    """
    Tags images with the destination reference and pushes them concurrently.
    """

    def __init__(self, engine: DockerEngine, sink: Optional[DisplaySink] = None):
        self.engine = engine
        self.sink = sink or NullSink()

    def push(self, destination: str, auth_token: Optional[str], services: List[ServiceDescriptor],
             token: Optional[CancelToken] = None) -> None:
        """
        Pushes the image of every service to ``destination``.

        Every image must already exist locally; this is checked for all of
        them before the first push starts.

        :param destination: Target reference, e.g. ``registry.example.com/org/app:v1``.
        :param auth_token: Registry credentials, see :func:`registry_auth`.
        :param services: The services whose images are pushed.
        :raises ImageTransferError: If an image is missing locally.
        :raises AggregatedError: Naming every image that failed to push.
        """
        token = token or CancelToken()
        reference = ImageReference.parse(destination)
        for service in services:
            if not self.engine.image_exists(service.image):
                raise ImageTransferError(
                    f"Image {service.image} for service {service.name} does not exist locally")

        auth = registry_auth(auth_token)
        BatchRunner(self.sink, token).run(
            services, lambda service: self.push_one(service, reference, auth, token),
            ResourceKind.IMAGE, Operation.PUSH, "Failed to push images",
            name_of=lambda service: service.image,
        )

    def push_one(self, service: ServiceDescriptor, reference: ImageReference,
                 auth: Optional[Dict[str, str]], token: CancelToken) -> None:
        self.engine.tag_image(service.image, reference.name, reference.tag)
        logger.debug("pushing %s as %s", service.image, reference)

        tracker = ProgressTracker()
        stream = self.engine.push_image(reference.name, reference.tag, auth_config=auth)
        for message in stream.follow(token, "push image", str(reference)):
            event = decode_event(message)
            if isinstance(event, ErrorEvent):
                raise ImageTransferError(f"Failed to push image {service.image}: {event.message}")
            if isinstance(event, StatusEvent) and event.total:
                previous = tracker.current
                if tracker.update(event.current, event.total) != previous:
                    self.sink.post(ProcessState.in_progress(service.image, ResourceKind.IMAGE,
                                                            Operation.PUSH, progress=tracker.current))
        self.sink.post(ProcessState.in_progress(service.image, ResourceKind.IMAGE, Operation.PUSH,
                                                progress=tracker.finish()))
