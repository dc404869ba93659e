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
Build context archives: the rendered Dockerfile plus a filtered snapshot of
the project sources.
"""
import io
import logging
import os
import tarfile
from typing import List

logger = logging.getLogger(__name__)

MANIFEST_FILE = "world.toml"
SOURCE_PREFIX = "cardinal/"


def is_hidden(relpath: str) -> bool:
    """Whether any component of ``relpath`` starts with a dot (``.git``, ``.env``...)."""
    return any(part.startswith(".") for part in relpath.split("/"))


def is_included(relpath: str) -> bool:
    """
    Whether a file belongs in the build context: the project manifest or
    anything under the Cardinal source directory.

    :param relpath: Path relative to the project root, using ``/`` separators.
    """
    if is_hidden(relpath):
        return False
    return relpath == MANIFEST_FILE or relpath.startswith(SOURCE_PREFIX)


def collect_files(root_dir: str) -> List[str]:
    """
    Lists the project files that go into the build context.

    :param root_dir: The project root.
    :return: Sorted relative paths with ``/`` separators.
    """
    selected = []
    for current, dirs, files in os.walk(root_dir):
        dirs[:] = sorted(d for d in dirs if not d.startswith("."))
        for filename in files:
            full_path = os.path.join(current, filename)
            relpath = os.path.relpath(full_path, root_dir).replace(os.sep, "/")
            if os.path.isfile(full_path) and is_included(relpath):
                selected.append(relpath)
    return sorted(selected)


def _add_bytes(archive: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name=name)
    info.size = len(data)
    info.mode = 0o644
    archive.addfile(info, io.BytesIO(data))


def create_build_context(root_dir: str, dockerfile: str) -> bytes:
    """
    Creates the tar archive sent to the engine for a build.

    :param root_dir: The project root.
    :param dockerfile: The rendered Dockerfile, stored as ``Dockerfile``.
    :return: The uncompressed tar archive.
    """
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        _add_bytes(archive, "Dockerfile", dockerfile.encode("utf-8"))
        files = collect_files(root_dir)
        for relpath in files:
            with open(os.path.join(root_dir, relpath), "rb") as f:
                _add_bytes(archive, relpath, f.read())
    logger.debug("build context for %s: Dockerfile + %d files", root_dir, len(files))
    return buffer.getvalue()
