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
Unit tests for the service descriptor builders and the role registry.
"""
import pytest
import yaml

from worldcli.MODELS.runtime_config import RuntimeConfig
from worldcli.MODELS.service_definition import RestartPolicy
from worldcli.SERVICES.cardinal import CARDINAL_PORT, DEBUG_PORT, cardinal
from worldcli.SERVICES.common import DEFAULT_NAMESPACE, container_name
from worldcli.SERVICES.evm import DEFAULT_DA_NAMESPACE_ID, celestia_devnet, evm
from worldcli.SERVICES.nakama import DEFAULT_DB_PASSWORD, NAKAMA_PLATFORM, nakama, nakama_db
from worldcli.SERVICES.redis import DEFAULT_REDIS_PORT, redis
from worldcli.SERVICES.registry import (ALL_CARDINAL_ROLES, BUILDERS, Role, all_cardinal_services,
                                        cardinal_roles, cardinal_services, evm_services, materialize)
from worldcli.SERVICES.telemetry import jaeger, prometheus, scrape_config


def make_config(**env):
    return RuntimeConfig(env={"CARDINAL_NAMESPACE": "ns", **env})


class TestCommon:
    """Tests for naming helpers."""

    def test_container_name(self):
        """Container names are prefixed with the namespace."""
        assert container_name(make_config(), "redis") == "ns-redis"

    def test_default_namespace(self):
        """A missing namespace falls back to the default."""
        assert container_name(RuntimeConfig(), "redis") == f"{DEFAULT_NAMESPACE}-redis"


class TestCardinal:
    """Tests for the Cardinal descriptor."""

    def test_defaults(self):
        """Cardinal is built locally and published on its port."""
        service = cardinal(make_config())
        assert service.name == "ns-cardinal"
        assert service.image == "ns"
        assert service.needs_build
        assert service.dockerfile.target == "runtime"
        assert service.port_bindings == {CARDINAL_PORT: CARDINAL_PORT}
        assert service.env["REDIS_ADDRESS"] == "ns-redis:6379"
        assert service.env["CARDINAL_LOG_LEVEL"] == "info"
        assert service.restart_policy is RestartPolicy.UNLESS_STOPPED
        assert [dependency.image for dependency in service.dependencies] == [
            "golang:1.24-bookworm", "gcr.io/distroless/base-debian12"]

    def test_debug(self):
        """Debug builds the debug stage and opens the debugger port."""
        service = cardinal(make_config().model_copy(update={"debug": True}))
        assert service.dockerfile.target == "runtime-debug"
        assert DEBUG_PORT in service.exposed_ports
        assert service.port_bindings[DEBUG_PORT] == DEBUG_PORT
        assert service.cap_add == ["SYS_PTRACE"]
        assert service.security_opt == ["seccomp:unconfined"]

    def test_config_overrides(self):
        """Values from the configuration override the defaults."""
        service = cardinal(make_config(CARDINAL_LOG_LEVEL="debug", ROUTER_KEY="k"))
        assert service.env["CARDINAL_LOG_LEVEL"] == "debug"
        assert service.env["ROUTER_KEY"] == "k"

    def test_dockerfile_renders(self):
        """The embedded Dockerfile renders for both builders."""
        source = cardinal(make_config()).dockerfile
        assert "--mount=type=cache" in source.render(buildkit=True)
        rendered = source.render(buildkit=False)
        assert "--mount" not in rendered
        assert "AS runtime-debug" in rendered


class TestNakama:
    """Tests for the Nakama and database descriptors."""

    def test_nakama_defaults(self):
        """Nakama runs migrations first and uses the default platform."""
        service = nakama(make_config())
        assert service.platform == NAKAMA_PLATFORM
        assert service.entrypoint[:2] == ["/bin/sh", "-ec"]
        assert "migrate up" in service.entrypoint[2]
        assert "--metrics.prometheus_port 9100" in service.entrypoint[2]
        assert service.env["CARDINAL_ADDR"] == "ns-cardinal:4040"
        assert service.health_check.retries == 20

    def test_nakama_platform_override(self):
        """Only os/arch platform overrides are honoured."""
        assert nakama(make_config(NAKAMA_IMAGE_PLATFORM="linux/arm64")).platform == "linux/arm64"
        assert nakama(make_config(NAKAMA_IMAGE_PLATFORM="arm64")).platform == NAKAMA_PLATFORM

    def test_metrics_disabled(self):
        """With telemetry on, metrics can be switched off."""
        config = make_config(NAKAMA_METRICS_ENABLED="false").model_copy(update={"telemetry": True})
        assert "--metrics.prometheus_port 0" in nakama(config).entrypoint[2]

    def test_db(self):
        """The database keeps its data in the namespace volume."""
        service = nakama_db(make_config())
        assert service.volume.source == "ns"
        assert service.env["COCKROACH_PASSWORD"] == DEFAULT_DB_PASSWORD
        assert service.command[0] == "start-single-node"


class TestRedis:
    """Tests for the Redis descriptor."""

    def test_custom_port(self):
        """REDIS_PORT moves the exposed port."""
        assert redis(make_config(REDIS_PORT="6380")).port_bindings == {6380: 6380}

    def test_bad_port_falls_back(self):
        """A non-numeric port falls back to the default."""
        assert redis(make_config(REDIS_PORT="abc")).exposed_ports == (DEFAULT_REDIS_PORT,)

    def test_out_of_range_port(self):
        """An out-of-range port is a construction error."""
        with pytest.raises(ValueError):
            redis(make_config(REDIS_PORT="70000"))


class TestEvm:
    """Tests for the EVM and Celestia descriptors."""

    def test_da_base_url_defaults_to_devnet(self):
        """Without DA_BASE_URL the local devnet is used."""
        service = evm(make_config())
        assert service.env["DA_BASE_URL"] == "http://ns-celestia-devnet"
        assert service.env["DA_NAMESPACE_ID"] == DEFAULT_DA_NAMESPACE_ID
        assert 8545 in service.port_bindings
        assert 8545 not in service.exposed_ports

    def test_dev_da_overrides_base_url(self):
        """dev_da always points at the local devnet."""
        config = make_config(DA_BASE_URL="http://celestia.example.com").model_copy(update={"dev_da": True})
        assert evm(config).env["DA_BASE_URL"] == "http://ns-celestia-devnet"
        assert evm(make_config(DA_BASE_URL="http://celestia.example.com")).env["DA_BASE_URL"] == \
            "http://celestia.example.com"

    def test_celestia(self):
        """The devnet restarts on failure and has a health check."""
        service = celestia_devnet(make_config())
        assert service.restart_policy is RestartPolicy.ON_FAILURE
        assert service.health_check is not None


class TestTelemetry:
    """Tests for the telemetry descriptors."""

    def test_scrape_config(self):
        """The Prometheus config scrapes Nakama's exporter."""
        parsed = yaml.safe_load(scrape_config("ns-nakama", "15"))
        assert parsed["global"]["scrape_interval"] == "15s"
        assert parsed["scrape_configs"][0]["static_configs"][0]["targets"] == ["ns-nakama:9100"]

    def test_prometheus_writes_config(self):
        """The entrypoint writes the config before starting Prometheus."""
        service = prometheus(make_config())
        assert service.entrypoint == ["/bin/sh", "-c"]
        assert "ns-nakama:9100" in service.command[0]
        assert service.command[0].rstrip().endswith("prometheus --config.file=./prometheus.yaml")

    def test_jaeger(self):
        """Jaeger stores traces in the namespace volume."""
        service = jaeger(make_config())
        assert service.volume.target == "/badger"
        assert service.user == "root"


class TestRegistry:
    """Tests for the role registry."""

    def test_every_role_has_a_builder(self):
        """Every role can be materialized."""
        config = make_config()
        for role in Role:
            assert role in BUILDERS
            assert materialize(role, config).name.startswith("ns-")

    def test_cardinal_roles_without_telemetry(self):
        """Only the core four run without telemetry."""
        config = make_config(NAKAMA_TRACE_ENABLED="true", NAKAMA_METRICS_ENABLED="true")
        assert cardinal_roles(config) == [Role.NAKAMA_DB, Role.REDIS, Role.CARDINAL, Role.NAKAMA]

    def test_cardinal_roles_with_telemetry(self):
        """Jaeger and Prometheus join when telemetry asks for them."""
        config = make_config(NAKAMA_TRACE_ENABLED="true", NAKAMA_METRICS_ENABLED="true")
        config = config.model_copy(update={"telemetry": True})
        assert cardinal_roles(config)[-2:] == [Role.JAEGER, Role.PROMETHEUS]
        assert len(cardinal_services(config)) == 6

    def test_groups_have_unique_names(self):
        """Container names within a group are unique."""
        config = make_config()
        for group in (all_cardinal_services(config), evm_services(config)):
            names = [service.name for service in group]
            assert len(names) == len(set(names))
        assert len(all_cardinal_services(config)) == len(ALL_CARDINAL_ROLES)

    def test_role_by_value(self):
        """Roles can be given by their string value."""
        assert materialize("redis", make_config()).name == "ns-redis"
