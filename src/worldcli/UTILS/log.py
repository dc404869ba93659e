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
Logging setup for the command line tool.
"""
import logging
import threading
from typing import Set

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_warned: Set[str] = set()
_warned_lock = threading.Lock()


def configure_logging(level: str = "WARNING") -> None:
    """
    Installs a single stderr handler on the ``worldcli`` logger.

    :param level: Name of the log level, e.g. "DEBUG" or "warning".
    """
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.WARNING

    root = logging.getLogger("worldcli")
    for handler in list(root.handlers):
        root.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(numeric)
    root.propagate = False


def warn_once(logger: logging.Logger, key: str, message: str) -> None:
    """
    Logs a warning the first time ``key`` is seen in this process.
    """
    with _warned_lock:
        if key in _warned:
            return
        _warned.add(key)
    logger.warning(message)
