"""Tests for configuration management."""

import sys

import pytest
import yaml

from dashscope_mcp.validation.config import AppConfig, Config, ConfigError


class TestConfig:
    """Tests for Config class."""

    def test_deep_merge(self):
        """Test deep merging of dictionaries."""
        config = Config()

        base = {
            "a": 1,
            "b": {"c": 2, "d": 3},
            "e": [1, 2, 3],
        }

        override = {
            "b": {"c": 10, "f": 5},
            "g": "new",
        }

        result = config._deep_merge(base, override)

        assert result["a"] == 1
        assert result["b"]["c"] == 10
        assert result["b"]["d"] == 3
        assert result["b"]["f"] == 5
        assert result["e"] == [1, 2, 3]
        assert result["g"] == "new"

    def test_local_overrides_global(self):
        """Test that local config wins over global config."""
        config = Config(
            global_config={"dashscope": {"model": "qwen-max", "top_p": 0.5}},
            local_config={"dashscope": {"model": "qwen-plus"}},
        )

        assert config.dashscope.model == "qwen-plus"
        assert config.dashscope.top_p == 0.5

    def test_environment_overrides_files(self):
        """Test that environment variables win over both files."""
        config = Config(
            global_config={"dashscope": {"api_key": "from-file"}, "proxy": {"port": 8000}},
            environ={"DASHSCOPE_API_KEY": "from-env", "PORT": "4321"},
        )

        assert config.dashscope.api_key == "from-env"
        assert config.proxy.port == 4321

    def test_invalid_port_env(self):
        """Test that a non-numeric PORT is a config error."""
        config = Config(environ={"PORT": "eighty"})

        with pytest.raises(ConfigError):
            config.merged

    def test_require_api_key_missing(self):
        """Test that a missing API key raises ConfigError."""
        config = Config()

        with pytest.raises(ConfigError, match="DASHSCOPE_API_KEY"):
            config.require_api_key()

    def test_require_api_key_present(self):
        config = Config(environ={"DASHSCOPE_API_KEY": "sk-test"})

        assert config.require_api_key() == "sk-test"

    def test_child_environment_carries_api_key(self):
        """Test that the subprocess environment includes the API key."""
        config = Config(local_config={"dashscope": {"api_key": "sk-child"}})

        env = config.child_environment()

        assert env["DASHSCOPE_API_KEY"] == "sk-child"
        assert "PATH" in env or sys.platform == "win32"

    def test_invalid_config_raises(self):
        """Test that schema violations surface as ConfigError."""
        config = Config(global_config={"proxy": {"request_timeout": -1}})

        with pytest.raises(ConfigError, match="Invalid configuration"):
            config.merged

    def test_zero_request_timeout_rejected(self):
        """Test that a zero request timeout is rejected."""
        config = Config(local_config={"proxy": {"request_timeout": 0}})

        with pytest.raises(ConfigError, match="request_timeout"):
            config.merged

    def test_zero_restart_delay_allowed(self):
        config = Config(local_config={"proxy": {"restart_delay": 0}})

        assert config.proxy.restart_delay == 0

    def test_load_explicit_file(self, tmp_path, monkeypatch):
        """Test loading an explicit YAML config file."""
        monkeypatch.setattr(Config, "GLOBAL_CONFIG_DIR", tmp_path / "global")
        monkeypatch.delenv("DASHSCOPE_API_KEY", raising=False)
        monkeypatch.delenv("PORT", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"proxy": {"port": 9999, "restart_delay": 2.5}}))

        config = Config.load(path=path, use_dotenv=False)

        assert config.proxy.port == 9999
        assert config.proxy.restart_delay == 2.5

    def test_load_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            Config.load(path=tmp_path / "nope.yaml", use_dotenv=False)

    def test_load_non_mapping_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigError, match="mapping"):
            Config._load_yaml(path)

    def test_create_default_global(self, tmp_path, monkeypatch):
        """Test writing the default global config never stores a secret."""
        monkeypatch.setattr(Config, "GLOBAL_CONFIG_DIR", tmp_path / ".dashscope-mcp")

        path = Config.create_default_global()

        data = yaml.safe_load(path.read_text())
        assert data["dashscope"]["api_key"] is None
        assert data["proxy"]["port"] == 3000


class TestAppConfig:
    """Tests for AppConfig schema."""

    def test_default_config(self):
        """Test creating default configuration."""
        config = AppConfig()

        assert config.dashscope.model == "qwen-turbo"
        assert config.dashscope.temperature == 0.7
        assert config.dashscope.max_tokens == 2000
        assert config.dashscope.top_p == 0.8
        assert config.proxy.request_timeout == 30.0
        assert config.proxy.restart_delay == 1.0
        assert config.proxy.fail_pending_on_exit is False
        assert config.proxy.server_command[1:] == ["-m", "dashscope_mcp", "serve"]
