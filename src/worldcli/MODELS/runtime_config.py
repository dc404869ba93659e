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
Models for the runtime configuration a command runs with.
"""
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field

NAMESPACE_KEY = "CARDINAL_NAMESPACE"


class RuntimeConfig(BaseModel):
    """
    Everything an orchestration command needs to know about the project:
    where it lives, the environment taken from world.toml and the flags the
    command was invoked with.
    """
    model_config = ConfigDict(frozen=True)

    root_dir: str = "."
    env: Dict[str, str] = Field(default_factory=dict)
    build: bool = False
    debug: bool = False
    detach: bool = False
    telemetry: bool = False
    dev_da: bool = False
    timeout: int = 10

    @property
    def namespace(self) -> str:
        return self.env.get(NAMESPACE_KEY, "")

    def get(self, key: str, default: str = "") -> str:
        """
        Returns an environment value, treating empty strings as unset.
        """
        value = self.env.get(key, "")
        return value if value != "" else default

    def with_env(self, **overrides: str) -> "RuntimeConfig":
        env = dict(self.env)
        env.update(overrides)
        return self.model_copy(update={"env": env})
