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
Naming and port helpers shared by the service descriptor builders.
"""
import logging
from typing import Dict, Iterable, Tuple

from ..MODELS.runtime_config import NAMESPACE_KEY, RuntimeConfig
from ..UTILS.log import warn_once

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "defaultnamespace"


def namespace(config: RuntimeConfig) -> str:
    """
    Returns the namespace of the environment, falling back to
    ``defaultnamespace`` with a one-time warning.
    """
    value = config.namespace
    if not value:
        warn_once(logger, "namespace",
                  f"{NAMESPACE_KEY} not set, using default namespace {DEFAULT_NAMESPACE!r}")
        return DEFAULT_NAMESPACE
    return value


def container_name(config: RuntimeConfig, suffix: str) -> str:
    return f"{namespace(config)}-{suffix}"


def exposed(*ports: int) -> Tuple[int, ...]:
    return tuple(ports)


def published(ports: Iterable[int]) -> Dict[int, int]:
    """Publishes every port on the same host port."""
    return {port: port for port in ports}
