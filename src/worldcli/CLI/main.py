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
Command line interface: ``world cardinal ...`` and ``world evm ...``.
"""
import logging
import signal
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

import click

from ..CONFIG.config_loader import LOG_LEVELS, load_config
from ..DISPLAY.sink import BufferedSink, ConsoleSink, DisplaySink
from ..errors import WorldCLIError
from ..MANAGERS.service_orchestrator import ServiceOrchestrator
from ..MODELS.runtime_config import RuntimeConfig
from ..SERVICES.registry import all_cardinal_services, cardinal_services, evm_services
from ..UTILS.cancellation import CancelToken
from ..UTILS.log import configure_logging

logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[RuntimeConfig, DisplaySink], ServiceOrchestrator]


def default_factory(config: RuntimeConfig, sink: DisplaySink) -> ServiceOrchestrator:
    return ServiceOrchestrator(config, sink=sink)


@contextmanager
def cancel_on_signals() -> Iterator[CancelToken]:
    """
    Yields the governing context of a command. SIGINT and SIGTERM cancel it
    instead of killing the process, so cleanup can run.
    """
    token = CancelToken()

    def handler(signum, frame):
        logger.debug("received signal %d, cancelling", signum)
        token.cancel()

    previous = {sig: signal.signal(sig, handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield token
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


def run(ctx: click.Context, action: Callable[[ServiceOrchestrator, CancelToken], None],
        message: Optional[str] = None, **flags) -> None:
    """
    Loads the configuration, runs ``action`` with an orchestrator and turns
    failures into a red report and exit code 1.
    """
    factory: OrchestratorFactory = ctx.obj.get("orchestrator_factory", default_factory)
    try:
        config = load_config(ctx.obj.get("config_file"), **flags)
        with BufferedSink(ConsoleSink()) as sink, factory(config, sink) as orchestrator, \
                cancel_on_signals() as token:
            action(orchestrator, token)
    except WorldCLIError as e:
        click.secho(str(e), fg="red", err=True)
        ctx.exit(1)
    except ValueError as e:
        click.secho(f"Invalid configuration: {e}", fg="red", err=True)
        ctx.exit(1)
    if message:
        click.echo(message)


@click.group()
@click.option("--config", "config_file", default=None, help="A TOML encoded config file (default: world.toml).")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.option("--log-level", default="WARNING", show_default=True,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Log level of the CLI itself.")
@click.pass_context
def cli(ctx, config_file, verbose, log_level):
    """
    World CLI - run World Engine projects locally with Docker.
    """
    configure_logging("DEBUG" if verbose else log_level)
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file


@cli.group()
def cardinal():
    """Manage the local Cardinal environment."""


@cardinal.command()
@click.option("--build/--no-build", default=True, show_default=True, help="Build the Cardinal image first.")
@click.option("--detach", "-d", is_flag=True, help="Run in the background.")
@click.option("--debug", is_flag=True, help="Run Cardinal under a debugger listening on port 40000.")
@click.option("--telemetry", is_flag=True, help="Enable tracing and metrics containers.")
@click.option("--log-level", "cardinal_log_level", default=None,
              type=click.Choice(LOG_LEVELS, case_sensitive=False), help="Cardinal's log level.")
@click.pass_context
def start(ctx, build, detach, debug, telemetry, cardinal_log_level):
    """Start Cardinal, Nakama and their backing services."""

    def action(orchestrator: ServiceOrchestrator, token: CancelToken) -> None:
        if not detach:
            click.echo("Running... Press Ctrl+C to stop.")
        orchestrator.start(cardinal_services(orchestrator.config), token)

    overrides = {"CARDINAL_LOG_LEVEL": cardinal_log_level} if cardinal_log_level else None
    run(ctx, action, "Cardinal started." if detach else "Cardinal stopped.",
        env_overrides=overrides, build=build, detach=detach, debug=debug, telemetry=telemetry)


@cardinal.command()
@click.pass_context
def stop(ctx):
    """Stop every Cardinal environment container."""
    run(ctx, lambda orchestrator, token: orchestrator.stop(all_cardinal_services(orchestrator.config), token),
        "Cardinal stopped.")


@cardinal.command()
@click.option("--detach", "-d", is_flag=True, help="Run in the background after restarting.")
@click.option("--debug", is_flag=True, help="Run Cardinal under a debugger listening on port 40000.")
@click.pass_context
def restart(ctx, detach, debug):
    """Stop and start the Cardinal environment again."""
    run(ctx, lambda orchestrator, token: orchestrator.restart(cardinal_services(orchestrator.config), token),
        "Cardinal restarted." if detach else None, build=True, detach=detach, debug=debug)


@cardinal.command()
@click.pass_context
def purge(ctx):
    """Remove every Cardinal environment container and its data volume."""
    run(ctx, lambda orchestrator, token: orchestrator.purge(all_cardinal_services(orchestrator.config), token),
        "Cardinal purged.")


@cardinal.command(name="build")
@click.option("--push-to", default=None, help="Push the built image to this reference.")
@click.option("--push-auth", default=None, help="Registry credentials used with --push-to.")
@click.option("--debug", is_flag=True, help="Build the debug image.")
@click.pass_context
def build_cmd(ctx, push_to, push_auth, debug):
    """Build the Cardinal image."""
    if push_auth and not push_to:
        raise click.UsageError("--push-auth requires --push-to")
    run(ctx, lambda orchestrator, token: orchestrator.build(
        cardinal_services(orchestrator.config), push_to=push_to, push_auth=push_auth, token=token),
        "Cardinal image built.", build=True, debug=debug)


@cli.group()
def evm():
    """Manage the EVM base shard."""


@evm.command(name="start")
@click.option("--dev-da", is_flag=True, help="Start and use a local Celestia devnet.")
@click.option("--da-auth-token", default=None, help="DA auth token for the rollup to reach Celestia.")
@click.pass_context
def evm_start(ctx, dev_da, da_auth_token):
    """Start the EVM base shard in the foreground."""
    run(ctx, lambda orchestrator, token: orchestrator.start_evm(dev_da, da_auth_token, token),
        "EVM stopped.", build=True, detach=False)


@evm.command(name="stop")
@click.pass_context
def evm_stop(ctx):
    """Stop the EVM base shard and the Celestia devnet."""
    run(ctx, lambda orchestrator, token: orchestrator.stop(evm_services(orchestrator.config), token),
        "EVM stopped.")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
