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
Image reference parsing.
Splits references like 'nginx:latest' or 'registry.example.com:5000/org/app:v1'
into the repository and tag the engine's tag and push calls expect.
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ImageReference:
    """
    Parsed Docker image reference.

    Examples:
        - nginx -> repository nginx, tag latest
        - myuser/myimage:v1 -> repository myuser/myimage, tag v1
        - localhost:5000/app -> registry localhost:5000, repository app, tag latest
        - gcr.io/project/image@sha256:abc -> digest sha256:abc, no tag
    """

    repository: str
    registry: Optional[str] = None
    tag: Optional[str] = None
    digest: Optional[str] = None

    DEFAULT_TAG = "latest"

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse a Docker image reference string.

        Args:
            reference: Image reference string (e.g., 'nginx:latest', 'myuser/myimage:v1')

        Returns:
            Parsed ImageReference object.

        Raises:
            ValueError: If the reference is empty or malformed.
        """
        reference = reference.strip()
        if not reference:
            raise ValueError("Empty image reference")

        digest = None
        if "@" in reference:
            reference, digest = reference.rsplit("@", 1)

        # A colon after the last slash is a tag; before it, a registry port
        tag = None
        last_colon = reference.rfind(":")
        if last_colon > reference.rfind("/"):
            reference, tag = reference[:last_colon], reference[last_colon + 1:]
            if not tag:
                raise ValueError("Empty tag in image reference")

        registry = None
        first, _, rest = reference.partition("/")
        if rest and ("." in first or ":" in first or first == "localhost"):
            registry, reference = first, rest

        if not reference:
            raise ValueError("Image reference has no repository")
        if not tag and not digest:
            tag = cls.DEFAULT_TAG
        return cls(repository=reference, registry=registry, tag=tag, digest=digest)

    @property
    def name(self) -> str:
        """Repository including the registry, without tag or digest."""
        if self.registry:
            return f"{self.registry}/{self.repository}"
        return self.repository

    def __str__(self) -> str:
        if self.digest:
            return f"{self.name}@{self.digest}"
        return f"{self.name}:{self.tag}"
