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
Unit tests for image references, progress, pulling and pushing.
"""
import base64
import json
from types import SimpleNamespace

import pytest

from worldcli.errors import AggregatedError, ImageTransferError
from worldcli.MODELS.process_state import Phase
from worldcli.MODELS.service_definition import DockerfileSource, ServiceDescriptor, image_only
from worldcli.REGISTRY.image_puller import ImagePuller, filter_images
from worldcli.REGISTRY.image_pusher import ImagePusher, registry_auth
from worldcli.REGISTRY.image_reference import ImageReference
from worldcli.REGISTRY.progress import ProgressTracker


class TestImageReference:
    """Tests for ImageReference."""

    @pytest.mark.parametrize("reference, expected", [
        ("nginx", ("nginx", None, "latest", None)),
        ("myuser/myimage:v1", ("myuser/myimage", None, "v1", None)),
        ("localhost:5000/app", ("app", "localhost:5000", "latest", None)),
        ("registry.example.com:5000/org/app:v2", ("org/app", "registry.example.com:5000", "v2", None)),
        ("gcr.io/project/image@sha256:abc", ("project/image", "gcr.io", None, "sha256:abc")),
    ])
    def test_parse(self, reference, expected):
        """References are split into repository, registry, tag and digest."""
        parsed = ImageReference.parse(reference)
        assert (parsed.repository, parsed.registry, parsed.tag, parsed.digest) == expected

    def test_name_and_str(self):
        """name keeps the registry; str adds the tag."""
        parsed = ImageReference.parse("localhost:5000/app:v1")
        assert parsed.name == "localhost:5000/app"
        assert str(parsed) == "localhost:5000/app:v1"

    @pytest.mark.parametrize("reference", ["", "   ", "app:"])
    def test_invalid(self, reference):
        """Empty references and tags are rejected."""
        with pytest.raises(ValueError):
            ImageReference.parse(reference)


class TestProgressTracker:
    """Tests for ProgressTracker."""

    def test_never_decreases(self):
        """Out-of-order reports never move the percentage back."""
        tracker = ProgressTracker()
        reported = [tracker.update(current, 100) for current in (10, 5, 50, 100)]
        assert reported == [10, 10, 50, 100]

    def test_capped_and_missing_totals(self):
        """Percentages stop at 100 and missing counters change nothing."""
        tracker = ProgressTracker()
        assert tracker.update(300, 100) == 100
        tracker = ProgressTracker()
        assert tracker.update(None, None) == 0
        assert tracker.update(5, 0) == 0
        assert tracker.finish() == 100


class TestFilterImages:
    """Tests for filter_images."""

    def test_dependencies_walked_and_deduplicated(self, engine):
        """Base images of built services are pulled once; built images are not."""
        first = ServiceDescriptor(name="one", dockerfile=DockerfileSource(content="FROM golang"),
                                  dependencies=(image_only("golang"),))
        second = ServiceDescriptor(name="two", image="redis", platform="linux/amd64",
                                   dependencies=(image_only("golang"),))
        assert filter_images(engine, [first, second]) == {"golang": None, "redis": "linux/amd64"}

    def test_present_images_skipped(self, engine):
        """Images already in the engine are not pulled."""
        engine.images.add("redis")
        assert filter_images(engine, [ServiceDescriptor(name="r", image="redis")]) == {}

    def test_cycle_detected(self, engine):
        """A dependency cycle is reported instead of recursing forever."""
        a = SimpleNamespace(name="a", image="a", needs_build=False, platform=None, dependencies=())
        b = SimpleNamespace(name="b", image="b", needs_build=False, platform=None, dependencies=(a,))
        a.dependencies = (b,)
        with pytest.raises(ValueError, match="Circular dependency detected involving a"):
            filter_images(engine, [a])


class TestImagePuller:
    """Tests for ImagePuller."""

    def test_pull_missing(self, engine, sink):
        """Missing images are pulled and end at 100%."""
        engine.pull_events["redis"] = [
            {"status": "Downloading", "id": "l1", "progressDetail": {"current": 10, "total": 100}},
            {"status": "Downloading", "id": "l2", "progressDetail": {"current": 5, "total": 100}},
            {"status": "Downloading", "id": "l1", "progressDetail": {"current": 50, "total": 100}},
        ]
        ImagePuller(engine, sink).pull_missing([ServiceDescriptor(name="r", image="redis")])
        progress = [state.progress for state in sink.for_name("redis") if state.phase is Phase.IN_PROGRESS]
        assert progress == [10, 50, 100]
        assert engine.image_exists("redis")

    def test_failure_does_not_stop_siblings(self, engine, sink):
        """A failing pull is aggregated while the others finish."""
        engine.pull_events["bad"] = [{"status": "Pulling"}, {"error": "manifest unknown"}]
        with pytest.raises(AggregatedError) as excinfo:
            ImagePuller(engine, sink).pull_missing([ServiceDescriptor(name="b", image="bad"),
                                                    ServiceDescriptor(name="g", image="good")])
        assert excinfo.value.names == ["bad"]
        assert isinstance(excinfo.value.failures[0][1], ImageTransferError)
        assert engine.image_exists("good")

    def test_nothing_to_pull(self, engine, sink):
        """No engine call happens when every image is present."""
        engine.images.add("redis")
        ImagePuller(engine, sink).pull_missing([ServiceDescriptor(name="r", image="redis")])
        assert engine.calls_for("pull") == []


class TestImagePusher:
    """Tests for ImagePusher and registry_auth."""

    def test_missing_image_fails_before_push(self, engine, sink):
        """Nothing is pushed when one image is missing locally."""
        engine.images.add("present")
        with pytest.raises(ImageTransferError, match="missing"):
            ImagePusher(engine, sink).push("registry.example.com/app:v1", None, [
                ServiceDescriptor(name="p", image="present"),
                ServiceDescriptor(name="m", image="missing"),
            ])
        assert engine.calls_for("push") == []

    def test_push_tags_then_pushes(self, engine, sink):
        """The image is tagged with the destination and pushed."""
        engine.images.add("app")
        ImagePusher(engine, sink).push("registry.example.com/org/app:v1", "tok",
                                       [ServiceDescriptor(name="a", image="app")])
        assert engine.tags == [("app", "registry.example.com/org/app", "v1")]
        assert engine.calls_for("push") == ["registry.example.com/org/app:v1"]
        assert sink.for_name("app")[-1].phase is Phase.FINISHED

    def test_push_error(self, engine, sink):
        """An error in the push stream fails the push."""
        engine.images.add("app")
        engine.push_events["registry.example.com/app"] = [{"errorDetail": {"message": "denied"}}]
        with pytest.raises(AggregatedError, match="denied"):
            ImagePusher(engine, sink).push("registry.example.com/app", None,
                                           [ServiceDescriptor(name="a", image="app")])

    def test_registry_auth(self):
        """Encoded auth headers are decoded; anything else is a registry token."""
        header = base64.urlsafe_b64encode(json.dumps({"username": "u", "password": "p"}).encode()).decode()
        assert registry_auth(header) == {"username": "u", "password": "p"}
        assert registry_auth("plain-token") == {"registrytoken": "plain-token"}
        assert registry_auth("") is None
        assert registry_auth(None) is None
