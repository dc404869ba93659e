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
Orchestration facade: composes networks, volumes, images and containers
into the build, start, stop, restart and purge operations.
"""
import logging
import time
from typing import Callable, List, Optional

from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..BUILDERS.image_builder import ImageBuilder
from ..DISPLAY.sink import ConsoleSink, DisplaySink
from ..ENGINE.client import DockerEngine
from ..errors import ConfigError, EngineError, OperationCancelled, WorldCLIError
from ..MODELS.runtime_config import RuntimeConfig
from ..MODELS.service_definition import ServiceDescriptor
from ..REGISTRY.image_puller import ImagePuller
from ..REGISTRY.image_pusher import ImagePusher
from ..SERVICES.common import container_name, namespace
from ..SERVICES.evm import DEFAULT_DA_NAMESPACE_ID
from ..SERVICES.registry import Role, materialize
from ..UTILS.cancellation import CancelToken
from .container_manager import ContainerManager
from .log_aggregator import LogAggregator
from .network_manager import NetworkManager
from .volume_manager import VolumeManager

logger = logging.getLogger(__name__)

DA_TOKEN_COMMAND = ["celestia", "bridge", "--node.store", "/home/celestia/bridge/", "auth", "admin"]
DA_TOKEN_ATTEMPTS = 10
DA_TOKEN_DELAY = 2.0
DA_REQUIRED_KEYS = ("DA_AUTH_TOKEN", "DA_BASE_URL", "DA_NAMESPACE_ID")


class ServiceOrchestrator:
    """
    Runs lifecycle operations for one environment.

    The orchestrator holds no state of its own besides its collaborators;
    Docker is the record of what is running.
    """

    def __init__(self, config: RuntimeConfig, engine: Optional[DockerEngine] = None,
                 sink: Optional[DisplaySink] = None, echo: Optional[Callable[[str], None]] = None):
        """
        Initializes the orchestrator.

        :param config: Runtime configuration of the environment.
        :param engine: Docker engine session, created from the environment when omitted.
        :param sink: Receives status events, a :class:`ConsoleSink` by default.
        :param echo: Prints forwarded container log lines.
        """
        self.config = config
        self.engine = engine or DockerEngine()
        self.sink = sink or ConsoleSink()
        self.networks = NetworkManager(self.engine, self.sink)
        self.volumes = VolumeManager(self.engine, self.sink)
        self.containers = ContainerManager(self.engine, self.sink, config.timeout)
        self.puller = ImagePuller(self.engine, self.sink)
        self.pusher = ImagePusher(self.engine, self.sink)
        self.builder = ImageBuilder(self.engine, config.root_dir, self.sink, self.containers)
        self.logs = LogAggregator(self.engine, echo)

    @property
    def namespace(self) -> str:
        return namespace(self.config)

    def close(self) -> None:
        self.engine.close()

    def __enter__(self) -> "ServiceOrchestrator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def build(self, services: List[ServiceDescriptor], push_to: Optional[str] = None,
              push_auth: Optional[str] = None, token: Optional[CancelToken] = None) -> None:
        """
        Builds every service image that has a Dockerfile, optionally pushing
        the result.

        :param services: The services to build; others are only pulled.
        :param push_to: Destination reference to push the built images to.
        :param push_auth: Registry credentials for the push.
        :param token: Governing context of the call.
        """
        token = token or CancelToken()
        self.volumes.ensure_volume(self.namespace)
        self.puller.pull_missing(services, token)
        self.builder.build_all(services, token)
        if push_to:
            built = [service for service in services if service.needs_build]
            self.pusher.push(push_to, push_auth, built, token)

    def start(self, services: List[ServiceDescriptor], token: Optional[CancelToken] = None,
              detach: Optional[bool] = None) -> None:
        """
        Starts ``services``.

        Unless detached, this then follows their logs until ``token`` is
        cancelled and stops every service before returning, whichever way
        the run ends. The stop runs under a fresh context so that the
        cancellation ending the run does not cut it short.

        :param services: The services to start.
        :param token: Governing context; cancelling it ends a foreground run.
        :param detach: Overrides ``config.detach``.
        """
        token = token or CancelToken()
        detach = self.config.detach if detach is None else detach

        ended_cleanly = False
        try:
            self.networks.ensure_network(self.namespace)
            self.volumes.ensure_volume(self.namespace)
            self.puller.pull_missing(services, token)
            if self.config.build:
                self.builder.build_all(services, token)
            self.containers.start(services, token)
            if not detach:
                self.logs.follow(services, token)
            ended_cleanly = True
        except OperationCancelled:
            logger.debug("start interrupted")
            ended_cleanly = True
        finally:
            if not detach:
                self._stop_after_foreground(services, propagate=ended_cleanly)

    def _stop_after_foreground(self, services: List[ServiceDescriptor], propagate: bool) -> None:
        try:
            self.containers.stop(services, CancelToken())
        except WorldCLIError as e:
            if propagate:
                raise
            # the error that ended the run is already on its way up
            logger.error("Failed to stop containers: %s", e)

    def stop(self, services: List[ServiceDescriptor], token: Optional[CancelToken] = None) -> None:
        self.containers.stop(services, token)

    def restart(self, services: List[ServiceDescriptor], token: Optional[CancelToken] = None) -> None:
        """
        Stops every service, then starts them again. Not atomic: if the start
        fails the environment is left stopped.
        """
        token = token or CancelToken()
        self.stop(services, token)
        self.start(services, token)

    def purge(self, services: List[ServiceDescriptor], token: Optional[CancelToken] = None) -> None:
        """
        Removes every service container and the environment's volume.
        """
        self.containers.remove(services, token)
        self.volumes.remove_volume(self.namespace)

    def wait_until_running(self, name: str, timeout: float = 10.0,
                           token: Optional[CancelToken] = None) -> None:
        """
        Polls until container ``name`` is running.

        :raises EngineError: If it is not running within ``timeout`` seconds.
        """
        token = token or CancelToken()
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.engine.container_running(name):
                return
            if token.wait(0.25):
                raise OperationCancelled(f"waiting for {name} cancelled")
        raise EngineError("wait for container", name, f"not running after {timeout:.0f}s")

    def fetch_da_auth_token(self, token: Optional[CancelToken] = None) -> str:
        """
        Asks the local Celestia devnet for an admin auth token, retrying while
        the node is still coming up.

        :raises WorldCLIError: If no single-line token is returned.
        """
        token = token or CancelToken()
        container = container_name(self.config, "celestia-devnet")
        retrying = Retrying(
            stop=stop_after_attempt(DA_TOKEN_ATTEMPTS),
            wait=wait_fixed(DA_TOKEN_DELAY),
            sleep=token.wait,
            retry=retry_if_exception_type(EngineError),
            before_sleep=lambda state: logger.warning(
                "failed to get DA token, %d/%d retrying...", state.attempt_number, DA_TOKEN_ATTEMPTS),
        )
        try:
            output = retrying(self.engine.exec_output, container, DA_TOKEN_COMMAND)
        except RetryError as e:
            raise WorldCLIError("timed out while getting DA token") from e.last_attempt.exception()

        da_token = output.strip()
        if "\n" in da_token:
            raise WorldCLIError(f"DA token should be a single line, got {da_token!r}")
        if not da_token:
            raise WorldCLIError("got empty DA token")
        return da_token

    def start_evm(self, dev_da: bool = False, da_auth_token: Optional[str] = None,
                  token: Optional[CancelToken] = None) -> None:
        """
        Starts the EVM base shard in the foreground.

        With ``dev_da`` a local Celestia devnet is started first and its auth
        token is handed to the shard; otherwise the DA settings must come from
        the configuration.

        :raises ConfigError: If a required DA setting is missing.
        """
        token = token or CancelToken()
        config = self.config.model_copy(update={"dev_da": dev_da})

        if dev_da:
            devnet = materialize(Role.CELESTIA_DEVNET, config)
            self.start([devnet], token, detach=True)
            self.wait_until_running(devnet.name, token=token)
            config = config.with_env(DA_AUTH_TOKEN=self.fetch_da_auth_token(token),
                                     DA_NAMESPACE_ID=DEFAULT_DA_NAMESPACE_ID)
        else:
            missing = [key for key in DA_REQUIRED_KEYS if not config.get(key)]
            if missing and not (da_auth_token and missing == ["DA_AUTH_TOKEN"]):
                raise ConfigError("the [evm] section of your config is missing some required variables: "
                                  + ", ".join(missing))

        if da_auth_token:
            config = config.with_env(DA_AUTH_TOKEN=da_auth_token)
        self.start([materialize(Role.EVM, config)], token, detach=False)
