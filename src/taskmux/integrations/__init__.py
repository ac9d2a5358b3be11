"""Clients for external collaborators."""

from .tools import SubprocessToolClient, ToolClient, ToolResult

__all__ = ["SubprocessToolClient", "ToolClient", "ToolResult"]
