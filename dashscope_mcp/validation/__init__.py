"""
dashscope-mcp validation module.

This module provides configuration validation and schema enforcement.
"""

from dashscope_mcp.errors import ConfigError
from dashscope_mcp.validation.config import AppConfig, Config, DashScopeConfig, ProxyConfig

__all__ = ["AppConfig", "Config", "ConfigError", "DashScopeConfig", "ProxyConfig"]
