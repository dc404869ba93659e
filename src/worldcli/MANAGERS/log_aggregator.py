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
Log aggregation for foreground runs: follows every container's output and
prints it with a coloured per-container prefix.
"""
import logging
import threading
import time
from typing import Callable, Dict, List, Optional

import click
from tenacity import RetryError, Retrying, retry_if_not_exception_type, wait_fixed

from ..ENGINE.client import DockerEngine, since_now
from ..errors import OperationCancelled
from ..MODELS.service_definition import ServiceDescriptor
from ..UTILS.ansi import prefix, remove_first_ansi_escape
from ..UTILS.cancellation import CancelToken
from ..UTILS.log_frames import read_frames

logger = logging.getLogger(__name__)

REATTACH_DELAY = 2.0
# How long followers get to wind down once the run is cancelled
JOIN_TIMEOUT = 5.0


def stop_when_cancelled(token: CancelToken) -> Callable[..., bool]:
    """Tenacity stop condition that ends retrying once ``token`` is cancelled."""
    return lambda retry_state: token.cancelled


class ContainerLogFollower:
    """
    Follows the output of one container until the token is cancelled.

    A stream that breaks or ends while the token is still live is re-attached
    after a short pause, resuming from the moment it was lost.
    """

    def __init__(self, engine: DockerEngine, name: str, index: int,
                 echo: Callable[[str], None], token: CancelToken):
        self.engine = engine
        self.name = name
        self.label = prefix(name, index)
        self.echo = echo
        self.token = token
        self.since: Optional[int] = None

    def run(self) -> None:
        retrying = Retrying(
            wait=wait_fixed(REATTACH_DELAY),
            sleep=self.token.wait,
            stop=stop_when_cancelled(self.token),
            retry=retry_if_not_exception_type(OperationCancelled),
            before_sleep=self._before_reattach,
        )
        try:
            retrying(self._follow_once)
        except (OperationCancelled, RetryError):
            logger.debug("stopped following logs of %s", self.name)

    def _before_reattach(self, retry_state) -> None:
        self.since = since_now()
        error = retry_state.outcome.exception()
        logger.debug("lost logs of %s (%s), re-attaching in %.0fs", self.name, error, REATTACH_DELAY)

    def _follow_once(self) -> None:
        self.token.raise_if_cancelled()
        stream = self.engine.open_log_stream(self.name, since=self.since)
        unregister = self.token.on_cancel(stream.interrupt)
        try:
            pending: Dict[int, bytes] = {}
            for frame in read_frames(stream.reader):
                buffered = pending.get(frame.stream, b"") + frame.payload
                *lines, pending[frame.stream] = buffered.split(b"\n")
                for line in lines:
                    self._print(line)
            for rest in pending.values():
                if rest:
                    self._print(rest)
        except Exception:
            if self.token.cancelled:
                raise OperationCancelled(f"following logs of {self.name} cancelled") from None
            raise
        finally:
            unregister()
            stream.close()

        if self.token.cancelled:
            raise OperationCancelled(f"following logs of {self.name} cancelled")
        raise EOFError(f"log stream of {self.name} ended")

    def _print(self, raw: bytes) -> None:
        line = raw.decode("utf-8", errors="replace").rstrip("\r")
        self.echo(f"{self.label} {remove_first_ansi_escape(line)}")


class LogAggregator:
    """
    Prints the combined output of many containers until cancelled.
    """

    def __init__(self, engine: DockerEngine, echo: Optional[Callable[[str], None]] = None):
        """
        Initializes the log aggregator.

        :param engine: The Docker engine session.
        :param echo: Line printer, ``click.echo`` by default.
        """
        self.engine = engine
        self._echo = echo or click.echo
        self._lock = threading.Lock()

    def echo(self, line: str) -> None:
        with self._lock:
            self._echo(line)

    def follow(self, services: List[ServiceDescriptor], token: CancelToken) -> None:
        """
        Follows the logs of every service and blocks until ``token`` is cancelled.

        :param services: The containers to follow.
        :param token: The governing context of the foreground run.
        """
        threads = []
        for index, service in enumerate(services):
            follower = ContainerLogFollower(self.engine, service.name, index, self.echo, token)
            thread = threading.Thread(target=follower.run, name=f"logs-{service.name}", daemon=True)
            thread.start()
            threads.append(thread)

        # short waits keep the main thread responsive to signals
        while not token.wait(0.5):
            pass

        deadline = time.monotonic() + JOIN_TIMEOUT
        for thread in threads:
            thread.join(max(0.0, deadline - time.monotonic()))
            if thread.is_alive():
                logger.warning("%s did not stop within %.0fs", thread.name, JOIN_TIMEOUT)
