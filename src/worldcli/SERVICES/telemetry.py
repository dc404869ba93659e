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
Optional telemetry containers: Jaeger for Nakama traces and Prometheus for
Nakama metrics.
"""
import yaml

from ..MODELS.runtime_config import RuntimeConfig
from ..MODELS.service_definition import ServiceDescriptor, VolumeMount
from .common import container_name, namespace, published
from .nakama import METRICS_PORT

JAEGER_IMAGE = "jaegertracing/all-in-one:1.61.0"
JAEGER_UI_PORT = 16686

PROMETHEUS_IMAGE = "prom/prometheus:v2.54.1"
PROMETHEUS_PORT = 9090
DEFAULT_METRICS_INTERVAL = "30"


def jaeger(config: RuntimeConfig) -> ServiceDescriptor:
    return ServiceDescriptor(
        name=container_name(config, "jaeger"),
        image=JAEGER_IMAGE,
        env={
            "SPAN_STORAGE_TYPE": "badger",
            "BADGER_EPHEMERAL": "false",
            "BADGER_DIRECTORY_VALUE": "/badger/data",
            "BADGER_DIRECTORY_KEY": "/badger/key",
            "QUERY_ADDITIONAL_HEADERS": "Access-Control-Allow-Origin:*",
        },
        user="root",
        port_bindings=published([JAEGER_UI_PORT]),
        network=namespace(config),
        volume=VolumeMount(source=namespace(config), target="/badger"),
    )


def scrape_config(nakama_container: str, interval: str) -> str:
    """
    Renders the Prometheus configuration scraping Nakama's metrics exporter.

    :param nakama_container: Host name of the Nakama container.
    :param interval: Scrape and evaluation interval in seconds.
    """
    config = {
        "global": {
            "scrape_interval": f"{interval}s",
            "evaluation_interval": f"{interval}s",
        },
        "scrape_configs": [
            {
                "job_name": "nakama",
                "metrics_path": "/",
                "static_configs": [{"targets": [f"{nakama_container}:{METRICS_PORT}"]}],
            }
        ],
    }
    return yaml.safe_dump(config, default_flow_style=False, sort_keys=False)


def prometheus(config: RuntimeConfig) -> ServiceDescriptor:
    """
    Builds the Prometheus descriptor. The image has no configuration for
    Nakama, so the entrypoint writes one before starting the server.
    """
    interval = config.get("NAKAMA_METRICS_INTERVAL", DEFAULT_METRICS_INTERVAL)
    script = (
        "cat > ./prometheus.yaml <<'EOF'\n"
        + scrape_config(container_name(config, "nakama"), interval)
        + "EOF\n"
        + "prometheus --config.file=./prometheus.yaml\n"
    )
    return ServiceDescriptor(
        name=container_name(config, "prometheus"),
        image=PROMETHEUS_IMAGE,
        entrypoint=["/bin/sh", "-c"],
        command=[script],
        port_bindings=published([PROMETHEUS_PORT]),
        network=namespace(config),
    )
