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
Models describing a single service container: image provenance, environment,
ports, health check, mounts and restart policy.
"""
from typing import Dict, List, Optional, Tuple
from enum import Enum

from jinja2 import Template
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MIN_PORT = 1
MAX_PORT = 65535


def validate_port(port: int) -> int:
    """
    Checks that a port number is a valid TCP port.

    :param port: The port to check.
    :return: The port, unchanged.
    :raises ValueError: If the port is outside 1-65535.
    """
    if not MIN_PORT <= port <= MAX_PORT:
        raise ValueError(f"invalid port {port}, must be between {MIN_PORT} and {MAX_PORT}")
    return port


class RestartPolicy(str, Enum):
    """
    Restart policies understood by the Docker engine.
    """
    UNLESS_STOPPED = "unless-stopped"
    ON_FAILURE = "on-failure"
    NONE = "no"


class HealthCheck(BaseModel):
    """
    A command the engine runs inside the container to decide if it is healthy.
    """
    model_config = ConfigDict(frozen=True)

    test: List[str]
    interval: float = 30.0
    timeout: float = 30.0
    retries: int = 3

    def to_engine(self) -> Dict[str, object]:
        """Returns the health check in the engine's nanosecond-based format."""
        return {
            "test": list(self.test),
            "interval": int(self.interval * 1_000_000_000),
            "timeout": int(self.timeout * 1_000_000_000),
            "retries": self.retries,
        }


class VolumeMount(BaseModel):
    """
    A named volume mounted into the container.
    """
    model_config = ConfigDict(frozen=True)

    source: str
    target: str


class DockerfileSource(BaseModel):
    """
    An embedded Dockerfile and the stage to build from it.
    """
    model_config = ConfigDict(frozen=True)

    content: str
    target: str = ""

    def render(self, buildkit: bool = False) -> str:
        """
        Renders the Dockerfile template.

        :param buildkit: Whether BuildKit-only instructions such as cache
            mounts may be used.
        """
        return Template(self.content).render(buildkit=buildkit)


class ServiceDescriptor(BaseModel):
    """
    The immutable definition of one service container.

    A descriptor either references an image to pull (``image``) or carries a
    Dockerfile to build locally (``dockerfile``). When both are present the
    image is the tag the build produces.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    image: str = ""
    dockerfile: Optional[DockerfileSource] = None

    # Container
    env: Dict[str, str] = Field(default_factory=dict)
    entrypoint: List[str] = Field(default_factory=list)
    command: List[str] = Field(default_factory=list)
    user: Optional[str] = None
    platform: Optional[str] = None

    # Networking
    exposed_ports: Tuple[int, ...] = ()
    port_bindings: Dict[int, int] = Field(default_factory=dict)  # {container: host}
    network: str = ""

    # Storage
    volume: Optional[VolumeMount] = None

    # Lifecycle
    restart_policy: RestartPolicy = RestartPolicy.NONE
    health_check: Optional[HealthCheck] = None

    # Privileges
    cap_add: List[str] = Field(default_factory=list)
    security_opt: List[str] = Field(default_factory=list)

    # Images that must exist before this one builds
    dependencies: Tuple["ServiceDescriptor", ...] = ()

    @field_validator("exposed_ports")
    @classmethod
    def _check_exposed(cls, ports: Tuple[int, ...]) -> Tuple[int, ...]:
        for port in ports:
            validate_port(port)
        return tuple(dict.fromkeys(ports))

    @field_validator("port_bindings")
    @classmethod
    def _check_bindings(cls, bindings: Dict[int, int]) -> Dict[int, int]:
        for container_port, host_port in bindings.items():
            validate_port(container_port)
            validate_port(host_port)
        return bindings

    @model_validator(mode="before")
    @classmethod
    def _default_build_tag(cls, data):
        # A locally built image is tagged with the service name unless told otherwise
        if isinstance(data, dict) and not data.get("image") and data.get("dockerfile") is not None:
            data = {**data, "image": data.get("name", "")}
        return data

    @model_validator(mode="after")
    def _check_provenance(self) -> "ServiceDescriptor":
        if not self.name:
            raise ValueError("service descriptor requires a name")
        if not self.image:
            raise ValueError(f"service {self.name} needs an image or a Dockerfile")
        return self

    @property
    def needs_build(self) -> bool:
        return self.dockerfile is not None

    def env_list(self) -> List[str]:
        return [f"{key}={value}" for key, value in self.env.items()]


def image_only(image: str) -> ServiceDescriptor:
    """
    Builds a descriptor for an image that is only pulled, never started,
    such as a base image needed by a Dockerfile.
    """
    return ServiceDescriptor(name=image, image=image)


ServiceDescriptor.model_rebuild()
