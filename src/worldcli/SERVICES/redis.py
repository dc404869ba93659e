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
The Redis instance Cardinal keeps its state in.
"""
import logging

from ..MODELS.runtime_config import RuntimeConfig
from ..MODELS.service_definition import RestartPolicy, ServiceDescriptor, VolumeMount
from .common import container_name, exposed, namespace, published

logger = logging.getLogger(__name__)

REDIS_IMAGE = "redis:latest"
DEFAULT_REDIS_PORT = 6379


def redis_port(config: RuntimeConfig) -> int:
    raw = config.get("REDIS_PORT", str(DEFAULT_REDIS_PORT))
    try:
        return int(raw)
    except ValueError:
        logger.error("Failed to convert redis port %r to int, defaulting to %d", raw, DEFAULT_REDIS_PORT)
        return DEFAULT_REDIS_PORT


def redis(config: RuntimeConfig) -> ServiceDescriptor:
    port = redis_port(config)
    return ServiceDescriptor(
        name=container_name(config, "redis"),
        image=REDIS_IMAGE,
        exposed_ports=exposed(port),
        port_bindings=published([port]),
        network=namespace(config),
        volume=VolumeMount(source="data", target="/redis"),
        restart_policy=RestartPolicy.UNLESS_STOPPED,
    )
