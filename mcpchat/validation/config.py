"""
mcpchat Configuration - Configuration loading and validation.

This module provides the Config class for managing mcpchat settings from both
global (~/.mcpchat/config.yaml) and local (.mcpchat/config.yaml) sources, and
the loader for the ``mcp.json`` document that lists the tool servers to launch.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from mcpchat.mcp.client import Timeouts
from mcpchat.mcp.schema import ServerDescriptor

logger = logging.getLogger(__name__)

MAX_MCP_CONFIG_BYTES = 10 * 1024 * 1024
MCP_CONFIG_FILENAME = "mcp.json"


class ConfigError(Exception):
    """Raised when there's a configuration error."""

    pass


class OllamaConfig(BaseModel):
    """Where the chat model lives."""

    base_url: str = "http://localhost:11434"


class AgentConfig(BaseModel):
    """Configuration for the conversation loop."""

    max_iterations: int = 10
    model_timeout: float = 300.0
    parallel_tool_calls: bool = False


class MCPConfig(BaseModel):
    """Configuration for connecting to tool servers."""

    config_file: Optional[str] = None
    timeouts: Timeouts = Field(default_factory=Timeouts)
    max_concurrent_connections: int = 8


class LoggingConfig(BaseModel):
    level: str = "WARNING"


class MCPChatConfig(BaseModel):
    """Complete mcpchat configuration schema."""

    model: str = "ollama/llama3.2"
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    mcp: MCPConfig = Field(default_factory=MCPConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class Config:
    """
    mcpchat configuration manager.

    Handles loading, merging, and validating configuration from:
    - Global: ~/.mcpchat/config.yaml
    - Local: .mcpchat/config.yaml (project-specific)

    Local configuration overrides global configuration.

    Example:
        >>> config = Config.load()
        >>> config.merged.model
        'ollama/llama3.2'
        >>> config.set_model("ollama/qwen3")
        >>> config.save()
    """

    GLOBAL_CONFIG_DIR = Path.home() / ".mcpchat"
    LOCAL_CONFIG_DIR = Path(".mcpchat")

    def __init__(
        self,
        global_config: Optional[Dict[str, Any]] = None,
        local_config: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize Config.

        Args:
            global_config: Global configuration dictionary.
            local_config: Local (project) configuration dictionary.
        """
        self._global_config = global_config or {}
        self._local_config = local_config or {}
        self._merged: Optional[MCPChatConfig] = None

    @classmethod
    def load(cls) -> "Config":
        """
        Load configuration from default locations.

        Returns:
            Config instance with loaded configuration.
        """
        global_config = cls._load_yaml(cls.GLOBAL_CONFIG_DIR / "config.yaml")
        local_config = cls._load_yaml(cls._find_local_config())

        return cls(global_config=global_config, local_config=local_config)

    @classmethod
    def _load_yaml(cls, path: Optional[Path]) -> Dict[str, Any]:
        """Load YAML file if it exists."""
        if path is None or not path.exists():
            return {}

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
                return data if data else {}
        except Exception as e:
            raise ConfigError(f"Failed to load config from {path}: {e}")

    @classmethod
    def _find_local_config(cls) -> Optional[Path]:
        """Find the local config file by walking up the directory tree."""
        current = Path.cwd()
        while current != current.parent:
            config_path = current / ".mcpchat" / "config.yaml"
            if config_path.exists():
                return config_path
            current = current.parent
        return None

    def get_merged_config(self) -> Dict[str, Any]:
        """Get the merged configuration as a dictionary."""
        return self._deep_merge(self._global_config.copy(), self._local_config)

    @property
    def merged(self) -> MCPChatConfig:
        """Get the validated merged configuration."""
        if self._merged is None:
            try:
                self._merged = MCPChatConfig(**self.get_merged_config())
            except ValidationError as e:
                raise ConfigError(f"Invalid configuration: {e}")
        return self._merged

    def set_model(self, model_name: str, global_: bool = False) -> None:
        """
        Set the default model.

        Args:
            model_name: The model to set as default, e.g. "ollama/llama3.2".
            global_: Whether to set globally or locally.
        """
        config = self._global_config if global_ else self._local_config
        config["model"] = model_name
        self._merged = None  # Reset cache

    def set_mcp_config_file(self, path: str, global_: bool = False) -> None:
        config = self._global_config if global_ else self._local_config
        config.setdefault("mcp", {})["config_file"] = path
        self._merged = None

    def save(self) -> None:
        """Save configuration to files. A new local file goes in ./.mcpchat/."""
        if self._global_config:
            self._save_yaml(self.GLOBAL_CONFIG_DIR / "config.yaml", self._global_config)

        if self._local_config:
            local_path = self._find_local_config() or self.LOCAL_CONFIG_DIR / "config.yaml"
            self._save_yaml(local_path, self._local_config)

    def _save_yaml(self, path: Path, data: Dict[str, Any]) -> None:
        """Save data to a YAML file."""
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

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
            "model": "ollama/llama3.2",
            "ollama": {"base_url": "http://localhost:11434"},
            "agent": {
                "max_iterations": 10,
                "model_timeout": 300,
                "parallel_tool_calls": False,
            },
            "mcp": {
                "config_file": None,  # Falls back to ./mcp.json, ~/mcp.json, ~/.config/mcp/mcp.json
                "timeouts": {"handshake": 60, "discovery": 30, "tool_call": 120, "close": 10},
                "max_concurrent_connections": 8,
            },
            "logging": {"level": "WARNING"},
        }

        with open(config_file, "w") as f:
            yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)

        return config_file


# ── mcp.json ─────────────────────────────────────────────────────────────


class MCPServerEntry(BaseModel):
    """One entry of ``mcpServers`` in mcp.json."""

    command: str
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)


class GlobalSettings(BaseModel):
    default_timeout: int = Field(default=0, alias="defaultTimeout")
    enable_debug_logging: bool = Field(default=False, alias="enableDebugLogging")
    max_concurrent_connections: int = Field(default=0, alias="maxConcurrentConnections")


class MCPServersFile(BaseModel):
    """The parsed mcp.json document."""

    mcp_servers: Dict[str, MCPServerEntry] = Field(default_factory=dict, alias="mcpServers")
    global_settings: GlobalSettings = Field(default_factory=GlobalSettings, alias="globalSettings")

    def descriptors(self) -> List[ServerDescriptor]:
        """Server descriptors in document order."""
        return [
            ServerDescriptor(name=name, command=entry.command, args=entry.args, env=entry.env)
            for name, entry in self.mcp_servers.items()
        ]

    def apply_to(self, settings: MCPChatConfig) -> MCPChatConfig:
        """Fold globalSettings into the application settings."""
        mcp = settings.mcp
        timeouts = mcp.timeouts
        if self.global_settings.default_timeout > 0:
            timeouts = timeouts.model_copy(update={"tool_call": float(self.global_settings.default_timeout)})
        max_conn = mcp.max_concurrent_connections
        if self.global_settings.max_concurrent_connections > 0:
            max_conn = self.global_settings.max_concurrent_connections
        level = "DEBUG" if self.global_settings.enable_debug_logging else settings.logging.level

        return settings.model_copy(
            update={
                "mcp": mcp.model_copy(update={"timeouts": timeouts, "max_concurrent_connections": max_conn}),
                "logging": settings.logging.model_copy(update={"level": level}),
            }
        )


def load_mcp_servers(path: Path) -> MCPServersFile:
    """
    Load and validate an mcp.json document.

    Raises:
        ConfigError: If the file is missing, empty, too large, not JSON,
            or a server entry has no command.
    """
    path = Path(path).expanduser()
    if not path.is_file():
        raise ConfigError(f"MCP configuration file not found: {path}")
    if path.suffix.lower() != ".json":
        logger.warning("Configuration file '%s' does not have .json extension", path.name)

    size = path.stat().st_size
    if size == 0:
        raise ConfigError(f"Configuration file is empty: {path}")
    if size > MAX_MCP_CONFIG_BYTES:
        raise ConfigError(
            f"Configuration file too large: {size / (1024 * 1024):.2f} MB (max: 10 MB)"
        )

    logger.info("Loading MCP configuration from: %s", path.resolve())
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to parse MCP configuration file '{path.name}': {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"MCP configuration file '{path.name}' must contain a JSON object")

    for name, entry in (data.get("mcpServers") or {}).items():
        if not str(name).strip():
            raise ConfigError("Server name cannot be empty")
        if not isinstance(entry, dict) or not str(entry.get("command") or "").strip():
            raise ConfigError(f"Server '{name}' has no command specified")

    try:
        servers = MCPServersFile.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid MCP configuration: {e}")

    if not servers.mcp_servers:
        logger.warning("Configuration contains no server definitions")
    else:
        logger.info("Loaded MCP configuration with %d servers", len(servers.mcp_servers))
    return servers


def find_mcp_config() -> Optional[Path]:
    """Search ./mcp.json, ~/mcp.json, and ~/.config/mcp/mcp.json in that order."""
    home = Path.home()
    for candidate in (
        Path.cwd() / MCP_CONFIG_FILENAME,
        home / MCP_CONFIG_FILENAME,
        home / ".config" / "mcp" / MCP_CONFIG_FILENAME,
    ):
        if candidate.is_file():
            return candidate
    return None


SAMPLE_MCP_CONFIG = {
    "globalSettings": {
        "defaultTimeout": 120,
        "enableDebugLogging": False,
        "maxConcurrentConnections": 8,
    },
    "mcpServers": {
        "filesystem": {
            "command": "npx",
            "args": ["-y", "@modelcontextprotocol/server-filesystem", "."],
            "env": {},
        },
        "another-server": {
            "command": "python",
            "args": ["-m", "mcp_server"],
            "env": {"API_KEY": "your-api-key-here"},
        },
    },
}


def write_sample_mcp_config(path: Path) -> Path:
    """Write a sample mcp.json to ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(SAMPLE_MCP_CONFIG, f, indent=2)
        f.write("\n")
    logger.info("Created sample MCP configuration at: %s", path.resolve())
    return path
