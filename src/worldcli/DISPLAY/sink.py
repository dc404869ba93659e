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
Display sinks for :class:`~worldcli.MODELS.process_state.ProcessState` events.

The orchestration engine only ever calls ``post``; how events are rendered
is up to the sink.
"""
import logging
import queue
import threading
from typing import Callable, Optional, Protocol

import click

from ..MODELS.process_state import Phase, ProcessState

logger = logging.getLogger(__name__)

TICK = "✔"
CROSS = "✘"
DOT = "•"


class DisplaySink(Protocol):
    """Anything that accepts status events."""

    def post(self, state: ProcessState) -> None:
        ...


class NullSink:
    """Discards every event."""

    def post(self, state: ProcessState) -> None:
        pass


def format_state(state: ProcessState) -> str:
    """
    Renders one event as a single line of text.

    :param state: The event to render.
    :return: e.g. ``✔ container ns-redis started``.
    """
    if state.phase is Phase.FINISHED:
        icon = click.style(CROSS, fg="red") if state.failed else click.style(TICK, fg="green")
    else:
        icon = click.style(DOT, fg="blue")

    line = f"{icon} {state.kind.value} {click.style(state.name, bold=True)} {state.label}"
    if state.progress is not None:
        line += f" {state.progress:3d}%"
    if state.detail:
        color = "red" if state.failed else None
        line += " " + click.style(f"({state.detail})", fg=color)
    return line


class ConsoleSink:
    """
    Writes one line per event to the terminal.

    :param echo: Output function, ``click.echo`` by default.
    :param show_progress: Whether in-progress events are printed at all.
    """

    def __init__(self, echo: Optional[Callable[[str], None]] = None, show_progress: bool = True):
        self.echo = echo or click.echo
        self.show_progress = show_progress
        self._lock = threading.Lock()

    def post(self, state: ProcessState) -> None:
        if state.phase is Phase.IN_PROGRESS and not self.show_progress:
            return
        with self._lock:
            self.echo(format_state(state))


class BufferedSink:
    """
    Hands events to another sink through a bounded queue and a background
    thread, so emitting tasks are never held up by rendering.

    When the queue is full, in-progress events are dropped; initiating and
    finished events wait for room.

    :param target: The sink that renders events.
    :param maxsize: Queue capacity.
    """

    _STOP = object()

    def __init__(self, target: DisplaySink, maxsize: int = 256):
        self.target = target
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._thread = threading.Thread(target=self._drain, name="display-sink", daemon=True)
        self._closed = False
        self._thread.start()

    def post(self, state: ProcessState) -> None:
        if self._closed:
            return
        if state.phase is Phase.IN_PROGRESS:
            try:
                self._queue.put_nowait(state)
            except queue.Full:
                pass
            return
        self._queue.put(state)

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """
        Renders everything still queued and stops the background thread.
        """
        if self._closed:
            return
        self._closed = True
        self._queue.put(self._STOP)
        self._thread.join(timeout)

    def __enter__(self) -> "BufferedSink":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            if item is self._STOP:
                return
            try:
                self.target.post(item)
            except Exception:
                logger.exception("display sink failed to render %r", item)
