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
Maps service roles to descriptor builders and groups them into the sets of
containers each command operates on.
"""
from enum import Enum
from typing import Callable, Dict, List

from ..MODELS.runtime_config import RuntimeConfig
from ..MODELS.service_definition import ServiceDescriptor
from .cardinal import cardinal
from .evm import celestia_devnet, evm
from .nakama import nakama, nakama_db
from .redis import redis
from .telemetry import jaeger, prometheus


class Role(str, Enum):
    """The kinds of container a World Engine environment can run."""

    CARDINAL = "cardinal"
    NAKAMA = "nakama"
    NAKAMA_DB = "nakama-db"
    REDIS = "redis"
    EVM = "evm"
    CELESTIA_DEVNET = "celestia-devnet"
    JAEGER = "jaeger"
    PROMETHEUS = "prometheus"


BUILDERS: Dict[Role, Callable[[RuntimeConfig], ServiceDescriptor]] = {
    Role.CARDINAL: cardinal,
    Role.NAKAMA: nakama,
    Role.NAKAMA_DB: nakama_db,
    Role.REDIS: redis,
    Role.EVM: evm,
    Role.CELESTIA_DEVNET: celestia_devnet,
    Role.JAEGER: jaeger,
    Role.PROMETHEUS: prometheus,
}


def materialize(role: Role, config: RuntimeConfig) -> ServiceDescriptor:
    """
    Builds the descriptor for ``role``. Every optional setting falls back to
    a default.

    :param role: Which service to describe.
    :param config: The runtime configuration of the environment.
    :raises ValueError: If the configuration yields an invalid port.
    """
    return BUILDERS[Role(role)](config)


def materialize_all(roles: List[Role], config: RuntimeConfig) -> List[ServiceDescriptor]:
    return [materialize(role, config) for role in roles]


def cardinal_roles(config: RuntimeConfig) -> List[Role]:
    """
    Roles started by ``world cardinal start``. Jaeger and Prometheus only
    join when telemetry is on and the matching Nakama option asks for them.
    """
    roles = [Role.NAKAMA_DB, Role.REDIS, Role.CARDINAL, Role.NAKAMA]
    if config.telemetry and config.get("NAKAMA_TRACE_ENABLED") == "true":
        roles.append(Role.JAEGER)
    if config.telemetry and config.get("NAKAMA_METRICS_ENABLED") == "true":
        roles.append(Role.PROMETHEUS)
    return roles


ALL_CARDINAL_ROLES = [Role.NAKAMA, Role.CARDINAL, Role.NAKAMA_DB, Role.REDIS, Role.JAEGER, Role.PROMETHEUS]
EVM_ROLES = [Role.EVM, Role.CELESTIA_DEVNET]


def cardinal_services(config: RuntimeConfig) -> List[ServiceDescriptor]:
    return materialize_all(cardinal_roles(config), config)


def all_cardinal_services(config: RuntimeConfig) -> List[ServiceDescriptor]:
    """Every container a Cardinal environment may have, for stop and purge."""
    return materialize_all(ALL_CARDINAL_ROLES, config)


def evm_services(config: RuntimeConfig) -> List[ServiceDescriptor]:
    return materialize_all(EVM_ROLES, config)
