"""
mcpchat validation module.

This module provides configuration validation and schema enforcement.
"""

from mcpchat.validation.config import (
    Config,
    ConfigError,
    MCPChatConfig,
    MCPServersFile,
    find_mcp_config,
    load_mcp_servers,
    write_sample_mcp_config,
)

__all__ = [
    "Config",
    "ConfigError",
    "MCPChatConfig",
    "MCPServersFile",
    "find_mcp_config",
    "load_mcp_servers",
    "write_sample_mcp_config",
]
