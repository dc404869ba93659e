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
Unit tests for loading world.toml.
"""
import os

import pytest

from worldcli.CONFIG.config_loader import (CONFIG_FILE_ENV, find_config_file, load_config,
                                           parse_config, validate_log_level)
from worldcli.errors import ConfigError

WORLD_TOML = """
[cardinal]
CARDINAL_NAMESPACE = "myworld"
CARDINAL_ROLLUP_ENABLED = false
REDIS_PORT = 6380

[evm]
DA_BASE_URL = "http://celestia:26658"
"""


@pytest.fixture
def project(tmp_path, monkeypatch):
    monkeypatch.delenv(CONFIG_FILE_ENV, raising=False)
    (tmp_path / "world.toml").write_text(WORLD_TOML)
    return tmp_path


class TestFindConfigFile:
    """Tests for find_config_file."""

    def test_explicit_path(self, project):
        """An explicit path is used as is."""
        assert find_config_file("/some/where.toml") == "/some/where.toml"

    def test_empty_explicit_path(self, project):
        """An explicit empty path is an error."""
        with pytest.raises(ConfigError, match="config cannot be empty"):
            find_config_file("")

    def test_environment_variable(self, project, monkeypatch):
        """The environment variable is used when no path is given."""
        monkeypatch.setenv(CONFIG_FILE_ENV, "/from/env.toml")
        assert find_config_file(None, str(project)) == "/from/env.toml"

    def test_parent_search(self, project):
        """world.toml is found in a parent directory."""
        nested = project / "cardinal" / "sys"
        nested.mkdir(parents=True)
        assert find_config_file(None, str(nested)) == os.path.join(str(project), "world.toml")

    def test_not_found(self, tmp_path, monkeypatch):
        """Searching without a world.toml anywhere fails."""
        monkeypatch.delenv(CONFIG_FILE_ENV, raising=False)
        monkeypatch.setattr(os.path, "isfile", lambda path: False)
        with pytest.raises(ConfigError, match="no config file found"):
            find_config_file(None, str(tmp_path))


class TestParseConfig:
    """Tests for parse_config."""

    def test_tables_merged(self):
        """Keys of both tables end up in one environment, stringified."""
        parsed = parse_config({"cardinal": {"A": 1, "B": True}, "evm": {"C": "c"}}, "/p/world.toml")
        assert parsed["env"] == {"A": "1", "B": "true", "C": "c"}
        assert parsed["root_dir"] == "/p"

    def test_duplicate_key(self):
        """A key in both tables is an error."""
        with pytest.raises(ConfigError, match="duplicate env variable 'A'"):
            parse_config({"cardinal": {"A": "1"}, "evm": {"A": "2"}}, "/p/world.toml")

    def test_relative_root_dir(self):
        """A relative root_dir is resolved against the file's directory."""
        parsed = parse_config({"root_dir": "game"}, "/p/world.toml")
        assert parsed["root_dir"] == os.path.join("/p", "game")

    def test_table_must_be_table(self):
        """A non-table section is an error."""
        with pytest.raises(ConfigError):
            parse_config({"cardinal": "nope"}, "/p/world.toml")


class TestLogLevel:
    """Tests for validate_log_level."""

    def test_default(self):
        """The log level defaults to info."""
        assert validate_log_level({})["CARDINAL_LOG_LEVEL"] == "info"

    def test_normalized(self):
        """Known levels are lower-cased."""
        assert validate_log_level({"CARDINAL_LOG_LEVEL": "DEBUG"})["CARDINAL_LOG_LEVEL"] == "debug"

    def test_invalid(self):
        """Unknown levels are rejected."""
        with pytest.raises(ConfigError, match="invalid CARDINAL_LOG_LEVEL"):
            validate_log_level({"CARDINAL_LOG_LEVEL": "loud"})


class TestLoadConfig:
    """Tests for load_config."""

    def test_load(self, project):
        """The file is parsed into a runtime configuration."""
        config = load_config(str(project / "world.toml"))
        assert config.namespace == "myworld"
        assert config.env["CARDINAL_ROLLUP_ENABLED"] == "false"
        assert config.env["REDIS_PORT"] == "6380"
        assert config.env["DA_BASE_URL"] == "http://celestia:26658"
        assert config.root_dir == str(project)

    def test_flags_copied(self, project):
        """Command flags are set on the configuration; None keeps the default."""
        config = load_config(str(project / "world.toml"), build=True, detach=None, debug=True)
        assert config.build and config.debug
        assert not config.detach

    def test_overrides_win(self, project):
        """Overrides from command flags beat the file."""
        config = load_config(str(project / "world.toml"), env_overrides={"CARDINAL_LOG_LEVEL": "warn"})
        assert config.env["CARDINAL_LOG_LEVEL"] == "warn"

    def test_dotenv_overlay(self, project):
        """Values from .env fill in what the file does not set."""
        (project / ".env").write_text("DB_PASSWORD=secret\nCARDINAL_NAMESPACE=fromdotenv\n")
        config = load_config(str(project / "world.toml"))
        assert config.env["DB_PASSWORD"] == "secret"
        assert config.namespace == "myworld"

    def test_missing_file(self, tmp_path):
        """A path that does not exist is a configuration error."""
        with pytest.raises(ConfigError, match="not found"):
            load_config(str(tmp_path / "absent.toml"))

    def test_invalid_toml(self, tmp_path):
        """Broken TOML is a configuration error."""
        (tmp_path / "world.toml").write_text("[cardinal\n")
        with pytest.raises(ConfigError, match="invalid TOML"):
            load_config(str(tmp_path / "world.toml"))

    def test_search_from_start_dir(self, project):
        """Without a path the file is searched from start_dir upwards."""
        nested = project / "cardinal"
        nested.mkdir()
        assert load_config(start_dir=str(nested)).namespace == "myworld"
