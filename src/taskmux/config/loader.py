"""Configuration loading and management."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from ..utils.logging import ConfigurationError

SESSION_NAME_SEPARATOR = "_"


class ToolServerConfig(BaseModel):
    """How to reach one external tool-protocol server."""

    command: str = Field(description="Executable spawned once per call")
    args: list[str] = Field(default_factory=list, description="Extra arguments")
    env: dict[str, str] = Field(
        default_factory=dict, description="Environment added to the call"
    )
    timeout: float | None = Field(
        default=None, description="Per-call timeout in seconds (tool_timeout if unset)"
    )


class TaskmuxConfig(BaseModel):
    """Configuration model for taskmux."""

    # Multiplexer naming
    session_prefix: str = Field(
        default="taskmux", description="Prefix for every managed tmux session"
    )
    session_name_max_length: int = Field(
        default=30, ge=8, description="Cap for slugified task session names"
    )

    # Git workspace settings
    branch_prefix: str = Field(default="feature", description="Prefix for batch branches")
    worktrees_dir: str = Field(
        default="gitworktree-projects",
        description="Directory under the project root holding managed worktrees",
    )

    # Project state
    state_dir: str = Field(
        default=".taskmux", description="Per-project state directory (registry, markers)"
    )
    task_file: str = Field(
        default=".taskmux/tasks.md", description="Default task document path"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str | None = Field(
        default="~/.taskmux/logs/taskmux.log", description="Log file path"
    )

    # Agent launcher
    launch_agents: bool = Field(
        default=False, description="Start the agent in every new batch session"
    )
    agent_command: str = Field(default="claude", description="Agent executable")
    agent_model: str | None = Field(default=None, description="Model passed to agent")
    agent_launch_delay: float = Field(
        default=2.0, ge=0, description="Seconds to wait before typing into a session"
    )

    # Tool-protocol collaborator
    tool_timeout: float = Field(
        default=60.0, gt=0, description="Default timeout for tool calls in seconds"
    )
    issue_tool_server: str | None = Field(
        default=None, description="Tool server used to enrich ticket-like ids"
    )
    issue_tool_name: str = Field(
        default="get_issue", description="Tool called on the issue server"
    )
    tool_servers: dict[str, ToolServerConfig] = Field(default_factory=dict)

    @field_validator("session_prefix")
    @classmethod
    def _prefix_without_separator(cls, value: str) -> str:
        if not value or SESSION_NAME_SEPARATOR in value:
            raise ValueError(
                f"session_prefix must be non-empty and must not contain "
                f"'{SESSION_NAME_SEPARATOR}'"
            )
        return value

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level


def find_config_file(custom_path: str | None = None) -> Path | None:
    """Find configuration file in standard locations."""
    if custom_path:
        path = Path(custom_path).expanduser()
        if path.exists():
            return path
        raise ConfigurationError(
            f"Config file not found: {custom_path}", {"path": custom_path}
        )

    search_paths = [
        Path.cwd() / "taskmux.yaml",
        Path.cwd() / "taskmux.yml",
        Path.home() / ".config" / "taskmux" / "config.yaml",
        Path.home() / ".taskmux.yaml",
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_config_file(config_path: Path) -> dict[str, Any]:
    """Load configuration from YAML file."""
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in config file {config_path}: {e}", {"path": str(config_path)}
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read config file {config_path}: {e}", {"path": str(config_path)}
        ) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {config_path} must contain a mapping",
            {"path": str(config_path)},
        )
    return data


def load_env_vars() -> dict[str, Any]:
    """Load configuration from environment variables."""
    config: dict[str, Any] = {}
    prefix = "TASKMUX_"

    env_mappings = {
        f"{prefix}SESSION_PREFIX": "session_prefix",
        f"{prefix}BRANCH_PREFIX": "branch_prefix",
        f"{prefix}WORKTREES_DIR": "worktrees_dir",
        f"{prefix}STATE_DIR": "state_dir",
        f"{prefix}TASK_FILE": "task_file",
        f"{prefix}LOG_LEVEL": "log_level",
        f"{prefix}LOG_FILE": "log_file",
        f"{prefix}LAUNCH_AGENTS": "launch_agents",
        f"{prefix}AGENT_COMMAND": "agent_command",
        f"{prefix}AGENT_MODEL": "agent_model",
        f"{prefix}AGENT_LAUNCH_DELAY": "agent_launch_delay",
        f"{prefix}TOOL_TIMEOUT": "tool_timeout",
        f"{prefix}ISSUE_TOOL_SERVER": "issue_tool_server",
    }

    for env_var, config_key in env_mappings.items():
        if env_var in os.environ:
            env_value = os.environ[env_var]
            if config_key in ("agent_launch_delay", "tool_timeout"):
                try:
                    config[config_key] = float(env_value)
                except ValueError:
                    continue
            elif config_key == "launch_agents":
                config[config_key] = env_value.lower() in ("true", "1", "yes", "on")
            else:
                config[config_key] = env_value

    return config


def load_config(
    config_path: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> TaskmuxConfig:
    """Load configuration from file and environment variables.

    Precedence order (highest to lowest):
    1. CLI flag overrides
    2. Environment variables
    3. Configuration file
    4. Default values
    """
    config_data: dict[str, Any] = {}

    config_file = find_config_file(config_path)
    if config_file:
        config_data.update(load_config_file(config_file))

    config_data.update(load_env_vars())

    if cli_overrides:
        config_data.update({k: v for k, v in cli_overrides.items() if v is not None})

    try:
        return TaskmuxConfig(**config_data)
    except ValueError as e:
        # pydantic.ValidationError subclasses ValueError
        raise ConfigurationError(f"Invalid configuration: {e}") from e
