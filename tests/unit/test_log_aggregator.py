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
Unit tests for following container logs.
"""
import threading
import time

import click
import pytest

from worldcli.MANAGERS import log_aggregator
from worldcli.MANAGERS.log_aggregator import ContainerLogFollower, LogAggregator
from worldcli.MODELS.service_definition import ServiceDescriptor
from worldcli.UTILS.cancellation import CancelToken
from worldcli.UTILS.log_frames import STDERR, STDOUT, LogFrame, encode_frame, encode_frames


@pytest.fixture(autouse=True)
def fast_reattach(monkeypatch):
    monkeypatch.setattr(log_aggregator, "REATTACH_DELAY", 0.01)


def cancel_when(token, condition, timeout=5.0):
    def watch():
        deadline = time.monotonic() + timeout
        while not condition() and time.monotonic() < deadline:
            time.sleep(0.01)
        token.cancel()

    thread = threading.Thread(target=watch, daemon=True)
    thread.start()
    return thread


class TestContainerLogFollower:
    """Tests for ContainerLogFollower."""

    def test_lines_reassembled_per_stream(self, engine):
        """Partial lines are joined per stream; a trailing fragment is printed at the end."""
        engine.log_data["ns-a"] = encode_frames([
            LogFrame(STDOUT, b"hel"),
            LogFrame(STDOUT, b"lo\nwor"),
            LogFrame(STDERR, b"err\n"),
            LogFrame(STDOUT, b"ld\ntail"),
        ])
        lines = []
        token = CancelToken()
        cancel_when(token, lambda: len(engine.log_attaches) >= 2)
        ContainerLogFollower(engine, "ns-a", 0, lines.append, token).run()
        assert [click.unstyle(line) for line in lines] == [
            "[ns-a] hello", "[ns-a] err", "[ns-a] world", "[ns-a] tail"]

    def test_reattach_resumes_from_now(self, engine):
        """A stream that ends is re-attached with a since timestamp."""
        lines = []
        token = CancelToken()
        cancel_when(token, lambda: len(engine.log_attaches) >= 3)
        ContainerLogFollower(engine, "ns-a", 0, lines.append, token).run()
        assert engine.log_attaches[0] == ("ns-a", None)
        assert all(since is not None for _, since in engine.log_attaches[1:])

    def test_broken_frame_reattaches(self, engine):
        """A stream cut inside a frame is re-attached rather than fatal."""
        engine.log_data["ns-a"] = encode_frame(STDOUT, b"ok\n") + encode_frame(STDOUT, b"cut off")[:10]
        lines = []
        token = CancelToken()
        cancel_when(token, lambda: len(engine.log_attaches) >= 2)
        ContainerLogFollower(engine, "ns-a", 0, lines.append, token).run()
        assert [click.unstyle(line) for line in lines] == ["[ns-a] ok"]

    def test_first_escape_removed(self, engine):
        """Only the first ANSI escape of a line is removed."""
        engine.log_data["ns-a"] = encode_frame(STDOUT, b"\x1b[32mINFO\x1b[0m ready\n")
        lines = []
        token = CancelToken()
        cancel_when(token, lambda: bool(lines))
        ContainerLogFollower(engine, "ns-a", 0, lines.append, token).run()
        assert lines[0].endswith(" INFO\x1b[0m ready")

    def test_cancelled_before_start(self, engine):
        """A cancelled token never attaches."""
        token = CancelToken()
        token.cancel()
        ContainerLogFollower(engine, "ns-a", 0, lambda line: None, token).run()
        assert engine.log_attaches == []


class TestLogAggregator:
    """Tests for LogAggregator."""

    def test_follows_every_service(self, engine):
        """Lines of all containers are printed until the token is cancelled."""
        engine.log_data["ns-a"] = encode_frame(STDOUT, b"from a\n")
        engine.log_data["ns-b"] = encode_frame(STDOUT, b"from b\n")
        lines = []
        token = CancelToken()
        cancel_when(token, lambda: len(lines) >= 2)
        services = [ServiceDescriptor(name="ns-a", image="a"), ServiceDescriptor(name="ns-b", image="b")]
        LogAggregator(engine, lines.append).follow(services, token)
        assert sorted(click.unstyle(line) for line in lines) == ["[ns-a] from a", "[ns-b] from b"]

    def test_stuck_follower_does_not_block_return(self, engine, monkeypatch):
        """A follower that never wakes up is abandoned after the join timeout."""
        monkeypatch.setattr(log_aggregator, "JOIN_TIMEOUT", 0.2)
        release = threading.Event()
        attached = []

        class StuckStream:
            interrupted = False

            def read(self, size):
                release.wait(10)
                return b""

            def interrupt(self):
                self.interrupted = True

            def close(self):
                pass

        stream = StuckStream()
        stream.reader = stream

        def open_log_stream(name, since=None):
            attached.append(name)
            return stream

        monkeypatch.setattr(engine, "open_log_stream", open_log_stream)
        token = CancelToken()
        cancel_when(token, lambda: bool(attached))
        try:
            started = time.monotonic()
            LogAggregator(engine, lambda line: None).follow([ServiceDescriptor(name="ns-a", image="a")], token)
            assert time.monotonic() - started < 5.0
            assert stream.interrupted
        finally:
            release.set()
