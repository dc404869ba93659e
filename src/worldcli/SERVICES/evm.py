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
The EVM base shard and the local Celestia devnet it posts data to.
"""
from ..MODELS.runtime_config import RuntimeConfig
from ..MODELS.service_definition import HealthCheck, RestartPolicy, ServiceDescriptor
from .cardinal import DEFAULT_BASE_SHARD_ROUTER_KEY, DEFAULT_ROUTER_KEY
from .common import container_name, exposed, namespace, published

EVM_IMAGE = "ghcr.io/argus-labs/world-engine-evm:latest"
EVM_EXPOSED_PORTS = (1317, 26657, 9090, 9601)
EVM_PUBLISHED_PORTS = (1317, 26657, 9090, 9601, 8545)

CELESTIA_IMAGE = "ghcr.io/rollkit/local-celestia-devnet:latest"
CELESTIA_PORTS = (26658, 26659)

DEFAULT_DA_NAMESPACE_ID = "67480c4a88c4d12935d4"
DEFAULT_FAUCET_ADDRESS = "aa9288F88233Eb887d194fF2215Cf1776a6FEE41"
DEFAULT_FAUCET_AMOUNT = "0x56BC75E2D63100000"
DEFAULT_CHAIN_ID = "world-420"
DEFAULT_CHAIN_KEY_MNEMONIC = (
    "enact adjust liberty squirrel bulk ticket invest tissue antique window "
    "thank slam unknown fury script among bread social switch glide wool clog flag enroll"
)


def evm(config: RuntimeConfig) -> ServiceDescriptor:
    """
    Builds the EVM descriptor. ``DA_BASE_URL`` points at the local devnet
    when it is unset or when ``config.dev_da`` is on.
    """
    da_base_url = config.get("DA_BASE_URL")
    if not da_base_url or config.dev_da:
        da_base_url = f"http://{container_name(config, 'celestia-devnet')}"

    platform = None
    requested = config.get("EVM_IMAGE_PLATFORM")
    if len(requested.split("/")) == 2:
        platform = requested

    return ServiceDescriptor(
        name=container_name(config, "evm"),
        image=config.get("EVM_IMAGE", EVM_IMAGE),
        env={
            "DA_BASE_URL": da_base_url,
            "DA_AUTH_TOKEN": config.get("DA_AUTH_TOKEN"),
            "DA_NAMESPACE_ID": config.get("DA_NAMESPACE_ID", DEFAULT_DA_NAMESPACE_ID),
            "FAUCET_ENABLED": config.get("FAUCET_ENABLED", "false"),
            "FAUCET_ADDRESS": config.get("FAUCET_ADDRESS", DEFAULT_FAUCET_ADDRESS),
            "FAUCET_AMOUNT": config.get("FAUCET_AMOUNT", DEFAULT_FAUCET_AMOUNT),
            "BASE_SHARD_ROUTER_KEY": config.get("BASE_SHARD_ROUTER_KEY", DEFAULT_BASE_SHARD_ROUTER_KEY),
            "ROUTER_KEY": config.get("ROUTER_KEY", DEFAULT_ROUTER_KEY),
            "CHAIN_ID": config.get("CHAIN_ID", DEFAULT_CHAIN_ID),
            "CHAIN_KEY_MNEMONIC": config.get("CHAIN_KEY_MNEMONIC", DEFAULT_CHAIN_KEY_MNEMONIC),
        },
        platform=platform,
        exposed_ports=exposed(*EVM_EXPOSED_PORTS),
        port_bindings=published(EVM_PUBLISHED_PORTS),
        network=namespace(config),
        restart_policy=RestartPolicy.UNLESS_STOPPED,
    )


def celestia_devnet(config: RuntimeConfig) -> ServiceDescriptor:
    return ServiceDescriptor(
        name=container_name(config, "celestia-devnet"),
        image=CELESTIA_IMAGE,
        exposed_ports=exposed(*CELESTIA_PORTS),
        port_bindings=published(CELESTIA_PORTS),
        network=namespace(config),
        restart_policy=RestartPolicy.ON_FAILURE,
        health_check=HealthCheck(test=["CMD", "curl", "-f", "http://127.0.0.1:26659/head"],
                                 interval=1, timeout=1, retries=20),
    )
