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
Thin wrapper around the Docker SDK exposing exactly the engine calls the
managers need. Every SDK failure leaves this module as an
:class:`~worldcli.errors.EngineError` naming the call and the resource.
"""
import json
import logging
import os
import socket
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

import docker
import requests
from docker import auth as docker_auth
from docker.errors import APIError, DockerException, NotFound
from docker.types import Mount
from docker.utils import parse_repository_tag

from ..errors import EngineError, OperationCancelled, ResourceConflict, ResourceNotFound
from ..MODELS.service_definition import ServiceDescriptor
from ..UTILS.cancellation import CancelToken

logger = logging.getLogger(__name__)

# First engine release with BuildKit
BUILDKIT_MIN_VERSION = (18, 9)
HTTP_CONFLICT = 409


def parse_version(version: str) -> Tuple[int, ...]:
    """
    Parses the leading numeric part of an engine version such as
    ``24.0.7`` or ``18.09.1-ce``.
    """
    parts = []
    for piece in version.split("."):
        digits = ""
        for char in piece:
            if not char.isdigit():
                break
            digits += char
        if not digits:
            break
        parts.append(int(digits))
    return tuple(parts)


def buildkit_requested(server_version: str, environ: Optional[Dict[str, str]] = None) -> bool:
    """
    Decides whether builds go through BuildKit.

    The engine must be new enough, ``USE_DOCKER_BUILDKIT`` must be ``1`` and
    ``DOCKER_BUILDKIT`` must be unset or ``1``.
    """
    environ = os.environ if environ is None else environ
    if parse_version(server_version) < BUILDKIT_MIN_VERSION:
        return False
    if environ.get("USE_DOCKER_BUILDKIT") != "1":
        return False
    return environ.get("DOCKER_BUILDKIT", "") in ("", "1")


@contextmanager
def engine_call(operation: str, resource: str):
    """
    Converts SDK and transport errors raised in the block into EngineError.
    """
    try:
        yield
    except NotFound as e:
        raise ResourceNotFound(operation, resource, e) from e
    except APIError as e:
        if e.status_code == HTTP_CONFLICT:
            raise ResourceConflict(operation, resource, e) from e
        raise EngineError(operation, resource, e) from e
    except (DockerException, requests.RequestException) as e:
        raise EngineError(operation, resource, e) from e


def interrupt_response(response: requests.Response) -> None:
    """
    Wakes a thread blocked reading ``response`` by shutting its socket down.

    ``response.close()`` takes the reader's lock, which the blocked thread
    holds, so it must only be called by the thread that reads the stream.
    This can be called from any thread.
    """
    fp = getattr(getattr(response.raw, "_fp", None), "fp", None)
    sock = getattr(fp, "raw", None)
    # plain and TLS sockets sit behind SocketIO._sock, named pipes behind .sock
    sock = getattr(sock, "_sock", None) or getattr(sock, "sock", None) or sock
    shutdown = getattr(sock, "shutdown", None)
    if shutdown is None:
        logger.debug("no socket to shut down for %s", response.url)
        return
    try:
        shutdown(socket.SHUT_RDWR)
    except OSError as e:
        logger.debug("socket of %s already closed: %s", response.url, e)


class EngineStream:
    """
    An iterator over a streaming engine response whose blocking reads can be
    interrupted from another thread.
    """

    def __init__(self, iterator: Iterator[Any], response: Optional[requests.Response] = None):
        self._iterator = iterator
        self.response = response

    def __iter__(self) -> Iterator[Any]:
        return self._iterator

    def interrupt(self) -> None:
        if self.response is not None:
            interrupt_response(self.response)

    def close(self) -> None:
        """Releases the stream. Only the thread iterating it may call this."""
        if self.response is not None:
            self.response.close()
        close = getattr(self._iterator, "close", None)
        if close is not None:
            close()

    def follow(self, token: CancelToken, operation: str, resource: str) -> Iterator[Any]:
        """
        Iterates the stream under the governing context. Cancelling ``token``
        shuts the connection down, which ends a blocked read.

        :raises OperationCancelled: If the token was cancelled.
        :raises EngineError: If reading the stream failed.
        """
        unregister = token.on_cancel(self.interrupt)
        try:
            for message in self._iterator:
                token.raise_if_cancelled()
                yield message
            token.raise_if_cancelled()
        except OperationCancelled:
            raise
        except Exception as e:
            if token.cancelled:
                raise OperationCancelled(f"{operation} {resource} cancelled") from None
            if isinstance(e, EngineError):
                raise
            raise EngineError(operation, resource, e) from e
        finally:
            unregister()
            self.close()


class LogStream:
    """
    A raw, still-multiplexed container log stream.

    ``reader`` is a blocking binary file object suitable for
    :func:`worldcli.UTILS.log_frames.read_frames`.
    """

    def __init__(self, response: requests.Response):
        self.response = response
        self.reader = response.raw

    def interrupt(self) -> None:
        interrupt_response(self.response)

    def close(self) -> None:
        self.response.close()


class DockerEngine:
    """
    Session with the local Docker engine.

    :param client: An existing ``docker.DockerClient``; one is created from the
        environment when omitted.
    :param buildkit: Force BuildKit on or off; probed from the engine when None.
    :param timeout: Default HTTP timeout in seconds for engine calls.
    """

    def __init__(self, client: Optional[docker.DockerClient] = None,
                 buildkit: Optional[bool] = None, timeout: int = 120):
        if client is None:
            with engine_call("connect to", "the Docker engine"):
                client = docker.from_env(timeout=timeout)
        self.client = client
        self.api = client.api
        self.buildkit_enabled = self._probe_buildkit() if buildkit is None else buildkit
        logger.debug("docker engine ready (buildkit=%s)", self.buildkit_enabled)

    def _probe_buildkit(self) -> bool:
        try:
            version = self.api.version().get("Version", "")
        except (DockerException, requests.RequestException) as e:
            logger.warning("Failed to get Docker server version: %s", e)
            return False
        return buildkit_requested(version)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "DockerEngine":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # Containers

    def container_exists(self, name: str) -> bool:
        try:
            with engine_call("inspect container", name):
                self.api.inspect_container(name)
        except ResourceNotFound:
            return False
        return True

    def container_running(self, name: str) -> bool:
        try:
            with engine_call("inspect container", name):
                state = self.api.inspect_container(name).get("State", {})
        except ResourceNotFound:
            return False
        return bool(state.get("Running"))

    def create_container(self, service: ServiceDescriptor) -> str:
        """
        Creates (but does not start) the container described by ``service``.

        :return: The new container's id.
        """
        with engine_call("create container", service.name):
            host_config = self.api.create_host_config(
                port_bindings=dict(service.port_bindings) or None,
                restart_policy=({"Name": service.restart_policy.value}
                                if service.restart_policy.value != "no" else None),
                network_mode=service.network or None,
                mounts=([Mount(target=service.volume.target, source=service.volume.source, type="volume")]
                        if service.volume else None),
                cap_add=service.cap_add or None,
                security_opt=service.security_opt or None,
            )
            networking_config = None
            if service.network:
                networking_config = self.api.create_networking_config(
                    {service.network: self.api.create_endpoint_config()})
            # bound ports are exposed too, as the docker CLI does for -p
            ports = sorted(set(service.exposed_ports) | set(service.port_bindings))
            created = self.api.create_container(
                service.image,
                name=service.name,
                environment=service.env_list() or None,
                ports=ports or None,
                entrypoint=service.entrypoint or None,
                command=service.command or None,
                user=service.user,
                healthcheck=service.health_check.to_engine() if service.health_check else None,
                host_config=host_config,
                networking_config=networking_config,
                platform=service.platform,
            )
        return created.get("Id", "")

    def start_container(self, name: str) -> None:
        with engine_call("start container", name):
            self.api.start(name)

    def stop_container(self, name: str, timeout: Optional[int] = None) -> None:
        with engine_call("stop container", name):
            if timeout is not None and timeout > 0:
                self.api.stop(name, timeout=timeout)
            else:
                self.api.stop(name)

    def remove_container(self, name: str) -> None:
        with engine_call("remove container", name):
            self.api.remove_container(name)

    def open_log_stream(self, name: str, since: Optional[int] = None) -> LogStream:
        """
        Follows a container's combined stdout and stderr.

        The SDK's own ``logs`` helper strips the frame headers, so the request
        is made directly to keep the multiplexed stream intact.

        :param since: Only return lines newer than this unix timestamp.
        """
        params: Dict[str, Any] = {"stdout": 1, "stderr": 1, "follow": 1, "timestamps": 0}
        if since is not None:
            params["since"] = since
        with engine_call("attach to logs of container", name):
            response = self.api._get(self.api._url("/containers/{0}/logs", name),
                                     params=params, stream=True, timeout=None)
            self.api._raise_for_status(response)
        return LogStream(response)

    def exec_output(self, container: str, cmd: List[str]) -> str:
        """
        Runs ``cmd`` in a running container and returns what it wrote to stdout.
        """
        with engine_call("exec in container", container):
            exec_id = self.api.exec_create(container, cmd, stdout=True, stderr=True)["Id"]
            stdout, _ = self.api.exec_start(exec_id, demux=True)
        return (stdout or b"").decode("utf-8", errors="replace")

    # Networks

    def network_names(self) -> List[str]:
        with engine_call("list", "networks"):
            return [network.get("Name", "") for network in self.api.networks()]

    def create_network(self, name: str, driver: str = "bridge") -> None:
        with engine_call("create network", name):
            self.api.create_network(name, driver=driver)

    # Volumes

    def volume_names(self) -> List[str]:
        with engine_call("list", "volumes"):
            volumes = self.api.volumes().get("Volumes") or []
        return [volume.get("Name", "") for volume in volumes]

    def create_volume(self, name: str) -> None:
        with engine_call("create volume", name):
            self.api.create_volume(name)

    def remove_volume(self, name: str) -> None:
        with engine_call("remove volume", name):
            self.api.remove_volume(name, force=True)

    # Images
    #
    # Pulls, pushes and builds are posted directly rather than through the
    # SDK helpers, which hide the response and so cannot be interrupted.

    def _open_stream(self, response: requests.Response) -> EngineStream:
        try:
            self.api._raise_for_status(response)
        except APIError:
            response.close()
            raise
        return EngineStream(self.api._stream_helper(response, decode=True), response)

    def _registry_auth_header(self, repository: str,
                              auth_config: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        if auth_config is not None:
            return {"X-Registry-Auth": docker_auth.encode_header(auth_config)}
        registry, _ = docker_auth.resolve_repository_name(repository)
        header = docker_auth.get_config_header(self.api, registry)
        return {"X-Registry-Auth": header} if header else {}

    def image_exists(self, image: str) -> bool:
        try:
            with engine_call("inspect image", image):
                self.api.inspect_image(image)
        except ResourceNotFound:
            return False
        return True

    def pull_image(self, image: str, platform: Optional[str] = None) -> EngineStream:
        with engine_call("pull image", image):
            repository, tag = parse_repository_tag(image)
            params = {"fromImage": repository, "tag": tag or "latest"}
            if platform:
                params["platform"] = platform
            response = self.api._post(self.api._url("/images/create"), params=params,
                                      headers=self._registry_auth_header(repository),
                                      stream=True, timeout=None)
            return self._open_stream(response)

    def tag_image(self, image: str, repository: str, tag: Optional[str] = None) -> None:
        with engine_call("tag image", image):
            self.api.tag(image, repository, tag)

    def push_image(self, repository: str, tag: Optional[str] = None,
                   auth_config: Optional[Dict[str, str]] = None) -> EngineStream:
        with engine_call("push image", repository):
            response = self.api._post_json(self.api._url("/images/{0}/push", repository), None,
                                           params={"tag": tag},
                                           headers=self._registry_auth_header(repository, auth_config),
                                           stream=True, timeout=None)
            return self._open_stream(response)

    def build_image(self, context: bytes, tag: str, target: str = "",
                    buildargs: Optional[Dict[str, str]] = None) -> EngineStream:
        """
        Sends a tar build context to the engine.

        :param context: The tar archive holding the Dockerfile and sources.
        :param tag: Tag given to the built image.
        :param target: Build stage to stop at.
        :return: A stream of decoded JSON messages. With BuildKit these are
            ``moby.buildkit.trace`` messages, otherwise classic stream lines.
        """
        params = {
            "t": tag,
            "dockerfile": "Dockerfile",
            "rm": "1",
            "buildargs": json.dumps(buildargs or {}),
        }
        if target:
            params["target"] = target
        if self.buildkit_enabled:
            # The SDK has no switch for the BuildKit builder
            params["version"] = "2"
        headers = {"Content-Type": "application/x-tar"}
        with engine_call("build image", tag):
            self.api._set_auth_headers(headers)
            response = self.api._post(self.api._url("/build"), params=params, data=context,
                                      headers=headers, stream=True, timeout=None)
            return self._open_stream(response)


def since_now() -> int:
    """Timestamp to resume a log stream from after a re-attach."""
    return int(time.time())
