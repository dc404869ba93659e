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
Loads world.toml into a :class:`~worldcli.MODELS.runtime_config.RuntimeConfig`.
"""
import logging
import os
import tomllib
from typing import Any, Dict, Optional

from dotenv import dotenv_values

from ..errors import ConfigError
from ..MODELS.runtime_config import RuntimeConfig

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = "WORLD_CLI_CONFIG_FILE"
CONFIG_FILENAME = "world.toml"
DOTENV_FILENAME = ".env"

# Keys under these tables become container environment variables
ENV_TABLES = ("cardinal", "evm")

LOG_LEVELS = ("trace", "debug", "info", "warn", "error", "fatal", "panic", "disabled")
DEFAULT_LOG_LEVEL = "info"


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def find_config_file(explicit: Optional[str] = None, start_dir: Optional[str] = None) -> str:
    """
    Locates the configuration file.

    Order: ``explicit``, then ``$WORLD_CLI_CONFIG_FILE``, then ``world.toml``
    in ``start_dir`` (the working directory by default) and each of its parents.

    :raises ConfigError: If no file is found.
    """
    if explicit is not None:
        if not explicit:
            raise ConfigError("config cannot be empty")
        return explicit

    from_env = os.environ.get(CONFIG_FILE_ENV, "")
    if from_env:
        return from_env

    current = os.path.abspath(start_dir or os.getcwd())
    while True:
        candidate = os.path.join(current, CONFIG_FILENAME)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    raise ConfigError("no config file found")


def parse_config(data: Dict[str, Any], filename: str) -> Dict[str, Any]:
    """
    Extracts ``root_dir`` and the merged environment from parsed TOML.

    :raises ConfigError: If a key appears in more than one environment table.
    """
    root_dir = data.get("root_dir")
    base_dir = os.path.dirname(os.path.abspath(filename))
    if root_dir is None:
        root_dir = base_dir
    elif not os.path.isabs(str(root_dir)):
        root_dir = os.path.join(base_dir, str(root_dir))

    env: Dict[str, str] = {}
    for table in ENV_TABLES:
        section = data.get(table)
        if section is None:
            continue
        if not isinstance(section, dict):
            raise ConfigError(f"[{table}] in {filename} must be a table")
        for key, value in section.items():
            if key in env:
                raise ConfigError(f"duplicate env variable {key!r}")
            env[key] = _stringify(value)
    return {"root_dir": str(root_dir), "env": env}


def validate_log_level(env: Dict[str, str]) -> Dict[str, str]:
    level = env.get("CARDINAL_LOG_LEVEL", "") or DEFAULT_LOG_LEVEL
    if level.lower() not in LOG_LEVELS:
        raise ConfigError(f"invalid CARDINAL_LOG_LEVEL {level!r}, must be one of: {', '.join(LOG_LEVELS)}")
    return {**env, "CARDINAL_LOG_LEVEL": level.lower()}


def load_config(filename: Optional[str] = None, start_dir: Optional[str] = None,
                env_overrides: Optional[Dict[str, str]] = None, **flags: Any) -> RuntimeConfig:
    """
    Loads the runtime configuration.

    :param filename: Explicit path from ``--config``.
    :param start_dir: Where to start searching for world.toml.
    :param env_overrides: Values that win over the file, e.g. from command flags.
    :param flags: Command flags copied onto the config (``build``, ``detach``...).
    :raises ConfigError: If the file is missing or invalid.
    """
    path = find_config_file(filename, start_dir)
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"config file {path} not found") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid TOML in {path}: {e}") from e

    parsed = parse_config(data, path)

    dotenv_path = os.path.join(os.path.dirname(os.path.abspath(path)), DOTENV_FILENAME)
    if os.path.isfile(dotenv_path):
        overlay = {key: value for key, value in dotenv_values(dotenv_path).items() if value is not None}
        parsed["env"] = {**overlay, **parsed["env"]}
        logger.debug("merged %d values from %s", len(overlay), dotenv_path)

    if env_overrides:
        parsed["env"].update(env_overrides)
    parsed["env"] = validate_log_level(parsed["env"])
    logger.debug("successfully loaded config from %s", path)
    return RuntimeConfig(**parsed, **{key: value for key, value in flags.items() if value is not None})
