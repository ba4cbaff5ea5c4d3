"""
dashscope-mcp Configuration - Configuration loading and validation.

This module provides the Config class for managing configuration from
global (~/.dashscope-mcp/config.yaml) and local (.dashscope-mcp/config.yaml)
files, with environment variables taking precedence over both.
"""

import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from dashscope_mcp.errors import ConfigError

DEFAULT_BASE_URL = "https://dashscope.aliyuncs.com/api/v1"
DEFAULT_MODEL = "qwen-turbo"


def default_server_command() -> List[str]:
    return [sys.executable, "-m", "dashscope_mcp", "serve"]


class DashScopeConfig(BaseModel):
    """Configuration for the DashScope endpoint."""

    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    temperature: float = 0.7
    max_tokens: int = 2000
    top_p: float = 0.8
    timeout: float = 120.0


class ProxyConfig(BaseModel):
    """Configuration for the HTTP proxy and its stdio subprocess."""

    host: str = "127.0.0.1"
    port: int = 3000
    request_timeout: float = 30.0
    restart_delay: float = 1.0
    fail_pending_on_exit: bool = False
    max_line_bytes: int = 16 * 1024 * 1024
    server_command: List[str] = Field(default_factory=default_server_command)
    static_dir: Optional[str] = None

    @field_validator("request_timeout")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("restart_delay")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = "INFO"


class AppConfig(BaseModel):
    """Complete dashscope-mcp configuration schema."""

    dashscope: DashScopeConfig = Field(default_factory=DashScopeConfig)
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# (env var, section, key, converter)
ENV_OVERRIDES = [
    ("DASHSCOPE_API_KEY", "dashscope", "api_key", str),
    ("DASHSCOPE_BASE_URL", "dashscope", "base_url", str),
    ("DASHSCOPE_MODEL", "dashscope", "model", str),
    ("PORT", "proxy", "port", int),
    ("DASHSCOPE_MCP_LOG_LEVEL", "logging", "level", str),
]


class Config:
    """
    dashscope-mcp configuration manager.

    Handles loading, merging, and validating configuration from:
    - Global: ~/.dashscope-mcp/config.yaml
    - Local: .dashscope-mcp/config.yaml (nearest ancestor of cwd)
    - Environment variables (and a .env file in the working directory)

    Local configuration overrides global configuration, and the environment
    overrides both.

    Example:
        >>> config = Config.load()
        >>> api_key = config.require_api_key()
        >>> port = config.merged.proxy.port
    """

    GLOBAL_CONFIG_DIR = Path.home() / ".dashscope-mcp"
    LOCAL_CONFIG_DIR = Path(".dashscope-mcp")

    def __init__(
        self,
        global_config: Optional[Dict[str, Any]] = None,
        local_config: Optional[Dict[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize Config.

        Args:
            global_config: Global configuration dictionary.
            local_config: Local (project) configuration dictionary.
            environ: Environment mapping consulted for overrides. Defaults to
                no overrides so that explicitly built configs are hermetic.
        """
        self._global_config = global_config or {}
        self._local_config = local_config or {}
        self._environ = dict(environ or {})
        self._merged: Optional[AppConfig] = None

    @classmethod
    def load(cls, path: Optional[Path] = None, use_dotenv: bool = True) -> "Config":
        """
        Load configuration from default locations.

        Args:
            path: Explicit config file used instead of the local lookup.
            use_dotenv: Load a .env file from the working directory first.

        Returns:
            Config instance with loaded configuration.
        """
        if use_dotenv:
            load_dotenv(find_dotenv(usecwd=True), override=False)

        global_config = cls._load_yaml(cls.GLOBAL_CONFIG_DIR / "config.yaml")
        local_path = path if path is not None else cls._find_local_config()
        if path is not None and not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        local_config = cls._load_yaml(local_path)

        return cls(global_config=global_config, local_config=local_config, environ=os.environ)

    @classmethod
    def _load_yaml(cls, path: Optional[Path]) -> Dict[str, Any]:
        """Load YAML file if it exists."""
        if path is None or not path.exists():
            return {}

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except Exception as e:
            raise ConfigError(f"Failed to load config from {path}: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return data

    @classmethod
    def _find_local_config(cls) -> Optional[Path]:
        """Find the local config file by walking up the directory tree."""
        current = Path.cwd()
        while current != current.parent:
            config_path = current / cls.LOCAL_CONFIG_DIR / "config.yaml"
            if config_path.exists():
                return config_path
            current = current.parent
        return None

    def get_merged_config(self) -> Dict[str, Any]:
        """Get the merged configuration (files, then environment) as a dictionary."""
        merged = self._deep_merge(self._global_config.copy(), self._local_config)
        return self._deep_merge(merged, self._env_overrides())

    def _env_overrides(self) -> Dict[str, Any]:
        overrides: Dict[str, Any] = {}
        for env_var, section, key, convert in ENV_OVERRIDES:
            value = self._environ.get(env_var)
            if not value:
                continue
            try:
                overrides.setdefault(section, {})[key] = convert(value)
            except ValueError:
                raise ConfigError(f"Invalid value for {env_var}: {value!r}")
        return overrides

    @property
    def merged(self) -> AppConfig:
        """Get the validated merged configuration."""
        if self._merged is None:
            try:
                self._merged = AppConfig(**self.get_merged_config())
            except ValidationError as e:
                raise ConfigError(f"Invalid configuration: {e}")
        return self._merged

    @property
    def dashscope(self) -> DashScopeConfig:
        return self.merged.dashscope

    @property
    def proxy(self) -> ProxyConfig:
        return self.merged.proxy

    def require_api_key(self) -> str:
        """Return the DashScope API key or raise ConfigError."""
        api_key = self.dashscope.api_key
        if not api_key:
            raise ConfigError(
                "DASHSCOPE_API_KEY is not set. Export it, add it to a .env file, "
                "or set dashscope.api_key in .dashscope-mcp/config.yaml"
            )
        return api_key

    def child_environment(self) -> Dict[str, str]:
        """Environment for the stdio server subprocess: inherited plus the API key."""
        env = dict(os.environ)
        api_key = self.dashscope.api_key
        if api_key:
            env["DASHSCOPE_API_KEY"] = api_key
        return env

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    @classmethod
    def create_default_global(cls) -> Path:
        """Create default global configuration file."""
        config_dir = cls.GLOBAL_CONFIG_DIR
        config_file = config_dir / "config.yaml"

        if config_file.exists():
            return config_file

        config_dir.mkdir(parents=True, exist_ok=True)

        default_config = {
            "dashscope": {
                "api_key": None,  # Set via DASHSCOPE_API_KEY env var
                "base_url": DEFAULT_BASE_URL,
                "model": DEFAULT_MODEL,
                "temperature": 0.7,
                "max_tokens": 2000,
                "top_p": 0.8,
            },
            "proxy": {
                "host": "127.0.0.1",
                "port": 3000,
                "request_timeout": 30.0,
                "restart_delay": 1.0,
            },
            "logging": {"level": "INFO"},
        }

        with open(config_file, "w") as f:
            yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)

        return config_file
