"""Configuration management module."""

from .loader import (
    SESSION_NAME_SEPARATOR,
    TaskmuxConfig,
    ToolServerConfig,
    find_config_file,
    load_config,
)

__all__ = [
    "SESSION_NAME_SEPARATOR",
    "TaskmuxConfig",
    "ToolServerConfig",
    "find_config_file",
    "load_config",
]
