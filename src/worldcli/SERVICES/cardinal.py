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
The Cardinal game shard, built locally from the project's ``cardinal/`` sources.
"""
from ..MODELS.runtime_config import RuntimeConfig
from ..MODELS.service_definition import (DockerfileSource, RestartPolicy, ServiceDescriptor,
                                         image_only)
from .common import container_name, exposed, namespace, published

CARDINAL_PORT = 4040
DEBUG_PORT = 40000

BUILDER_IMAGE = "golang:1.24-bookworm"
RUNTIME_IMAGE = "gcr.io/distroless/base-debian12"

# Rendered at build time; ``buildkit`` is true when the engine builds with BuildKit
DOCKERFILE_TEMPLATE = r"""
FROM golang:1.24-bookworm AS builder
WORKDIR /go/src/app
COPY cardinal/go.mod cardinal/go.sum ./
RUN {% if buildkit %}--mount=type=cache,target="/go/pkg/mod" {% endif %}go mod download
COPY cardinal/ ./
RUN {% if buildkit %}--mount=type=cache,target="/root/.cache/go-build" {% endif %}\
    CGO_ENABLED=0 GOOS=linux go build -v -o /go/bin/app

FROM builder AS builder-debug
RUN {% if buildkit %}--mount=type=cache,target="/root/.cache/go-build" {% endif %}\
    go install github.com/go-delve/delve/cmd/dlv@latest && \
    CGO_ENABLED=0 GOOS=linux go build -gcflags="all=-N -l" -v -o /go/bin/app-debug

FROM gcr.io/distroless/base-debian12 AS runtime
COPY world.toml /world.toml
ENV WORLD_CLI_CONFIG_FILE=/world.toml
COPY --from=builder /go/bin/app /usr/bin/app
EXPOSE 4040
CMD ["app"]

FROM golang:1.24-bookworm AS runtime-debug
COPY world.toml /world.toml
ENV WORLD_CLI_CONFIG_FILE=/world.toml
COPY --from=builder-debug /go/bin/dlv /usr/bin/dlv
COPY --from=builder-debug /go/bin/app-debug /usr/bin/app
EXPOSE 4040 40000
CMD ["dlv", "--listen=:40000", "--headless=true", "--api-version=2", "--accept-multiclient", "exec", "/usr/bin/app"]
""".lstrip()

DEFAULT_BASE_SHARD_ROUTER_KEY = "abcdefghijklmnopqrstuvwxyz0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ01"
DEFAULT_ROUTER_KEY = "25a0f627050d11b1461b2728ea3f704e141312b1d4f2a21edcec4eccddd940c2"


def cardinal(config: RuntimeConfig) -> ServiceDescriptor:
    """
    Builds the Cardinal descriptor. With ``config.debug`` the image is built
    from the ``runtime-debug`` stage and the delve port is published.
    """
    ports = [CARDINAL_PORT]
    cap_add = []
    security_opt = []
    if config.debug:
        ports.append(DEBUG_PORT)
        cap_add = ["SYS_PTRACE"]
        security_opt = ["seccomp:unconfined"]

    return ServiceDescriptor(
        name=container_name(config, "cardinal"),
        image=namespace(config),
        dockerfile=DockerfileSource(
            content=DOCKERFILE_TEMPLATE,
            target="runtime-debug" if config.debug else "runtime",
        ),
        env={
            "REDIS_ADDRESS": f"{container_name(config, 'redis')}:6379",
            "BASE_SHARD_SEQUENCER_ADDRESS": f"{container_name(config, 'evm')}:9601",
            "BASE_SHARD_ROUTER_KEY": config.get("BASE_SHARD_ROUTER_KEY", DEFAULT_BASE_SHARD_ROUTER_KEY),
            "CARDINAL_LOG_LEVEL": config.get("CARDINAL_LOG_LEVEL", "info"),
            "CARDINAL_LOG_PRETTY": config.get("CARDINAL_LOG_PRETTY", "true"),
            "CARDINAL_ROLLUP_ENABLED": config.get("CARDINAL_ROLLUP_ENABLED", "false"),
            "TELEMETRY_PROFILER_ENABLED": config.get("TELEMETRY_PROFILER_ENABLED", "false"),
            "TELEMETRY_TRACE_ENABLED": config.get("TELEMETRY_TRACE_ENABLED", "false"),
            "ROUTER_KEY": config.get("ROUTER_KEY", DEFAULT_ROUTER_KEY),
        },
        exposed_ports=exposed(*ports),
        port_bindings=published(ports),
        network=namespace(config),
        restart_policy=RestartPolicy.UNLESS_STOPPED,
        cap_add=cap_add,
        security_opt=security_opt,
        dependencies=(image_only(BUILDER_IMAGE), image_only(RUNTIME_IMAGE)),
    )
