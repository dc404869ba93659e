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
The Nakama relay and the CockroachDB instance it stores its data in.
"""
import logging

from ..MODELS.runtime_config import RuntimeConfig
from ..MODELS.service_definition import HealthCheck, RestartPolicy, ServiceDescriptor, VolumeMount
from ..UTILS.log import warn_once
from .common import container_name, exposed, namespace, published

logger = logging.getLogger(__name__)

NAKAMA_IMAGE = "ghcr.io/argus-labs/world-engine-nakama:latest"
NAKAMA_PLATFORM = "linux/amd64"
NAKAMA_PORTS = (7349, 7350, 7351)
# Nakama disables its prometheus exporter when the port is 0
METRICS_PORT = 9100

NAKAMA_DB_IMAGE = "cockroachdb/cockroach:latest-v23.1"
NAKAMA_DB_PORTS = (26257, 8080)
DEFAULT_DB_PASSWORD = "very_unsecure_password_please_change"


def db_password(config: RuntimeConfig) -> str:
    password = config.get("DB_PASSWORD")
    if not password:
        warn_once(logger, "db-password", "Using default DB_PASSWORD, please change it.")
        return DEFAULT_DB_PASSWORD
    return password


def _parse_bool(value: str):
    lowered = value.strip().lower()
    if lowered in ("1", "t", "true"):
        return True
    if lowered in ("0", "f", "false"):
        return False
    return None


def nakama(config: RuntimeConfig) -> ServiceDescriptor:
    """
    Builds the Nakama descriptor. The entrypoint runs the database migrations
    before starting the server.
    """
    trace_enabled = config.get("NAKAMA_TRACE_ENABLED")
    if not trace_enabled or not config.telemetry:
        trace_enabled = "true"

    metrics_enabled = True
    if config.telemetry:
        parsed = _parse_bool(config.get("NAKAMA_METRICS_ENABLED"))
        if parsed is not None:
            metrics_enabled = parsed

    password = db_password(config)
    database = f"postgres:{password}@{container_name(config, 'nakama-db')}:5432/nakama"
    script = (
        f"/nakama/nakama migrate up --database.address {database} && "
        f"/nakama/nakama --database.address {database} --config /nakama/data/local.yml "
        f"--socket.outgoing_queue_size=64 --logger.level INFO "
        f"--metrics.prometheus_port {METRICS_PORT if metrics_enabled else 0}"
    )

    platform = NAKAMA_PLATFORM
    requested = config.get("NAKAMA_IMAGE_PLATFORM")
    if len(requested.split("/")) == 2:
        platform = requested

    return ServiceDescriptor(
        name=container_name(config, "nakama"),
        image=config.get("NAKAMA_IMAGE", NAKAMA_IMAGE),
        env={
            "CARDINAL_CONTAINER": container_name(config, "cardinal"),
            "CARDINAL_ADDR": f"{container_name(config, 'cardinal')}:4040",
            "CARDINAL_NAMESPACE": namespace(config),
            "DB_PASSWORD": password,
            "ENABLE_ALLOWLIST": config.get("ENABLE_ALLOWLIST", "false"),
            "OUTGOING_QUEUE_SIZE": config.get("OUTGOING_QUEUE_SIZE", "64"),
            "TRACE_ENABLED": trace_enabled,
            "JAEGER_ADDR": f"{container_name(config, 'jaeger')}:4317",
            "JAEGER_SAMPLE_RATE": config.get("NAKAMA_TRACE_SAMPLE_RATE", "0.6"),
        },
        entrypoint=["/bin/sh", "-ec", script],
        platform=platform,
        exposed_ports=exposed(*NAKAMA_PORTS),
        port_bindings=published(NAKAMA_PORTS),
        network=namespace(config),
        restart_policy=RestartPolicy.UNLESS_STOPPED,
        health_check=HealthCheck(test=["CMD", "/nakama/nakama", "healthcheck"],
                                 interval=1, timeout=1, retries=20),
    )


def nakama_db(config: RuntimeConfig) -> ServiceDescriptor:
    return ServiceDescriptor(
        name=container_name(config, "nakama-db"),
        image=NAKAMA_DB_IMAGE,
        command=["start-single-node", "--insecure",
                 "--store=attrs=ssd,path=/var/lib/cockroach/,size=20%"],
        env={
            "COCKROACH_DATABASE": "nakama",
            "COCKROACH_USER": "root",
            "COCKROACH_PASSWORD": db_password(config),
        },
        exposed_ports=exposed(*NAKAMA_DB_PORTS),
        port_bindings=published(NAKAMA_DB_PORTS),
        network=namespace(config),
        volume=VolumeMount(source=namespace(config), target="/var/lib/cockroach"),
        restart_policy=RestartPolicy.UNLESS_STOPPED,
        health_check=HealthCheck(test=["CMD", "curl", "-f", "http://localhost:8080/health?ready=1"],
                                 interval=3, timeout=3, retries=5),
    )
