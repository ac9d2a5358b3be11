"""
Tmux session management for taskmux.

This package wraps libtmux behind a small async service used to create,
query, kill and type into per-task sessions.
"""

from .service import MultiplexerService

__all__ = ["MultiplexerService"]
