"""
Tmux session management service.

Thin async surface over libtmux used by the orchestrator and the lifecycle
controller: create, query, kill, list and type into named sessions. Each
libtmux call runs in a worker thread so the event loop stays responsive to
signals while tmux is working.
"""

import asyncio
from pathlib import Path

import libtmux
from libtmux.exc import LibTmuxException

from ..core.context import RuntimeContext
from ..utils.logging import LogContext, SessionError
from .logging_utils import log_keys_sent, log_session_list, log_session_operation


class MultiplexerService:
    """Named tmux sessions, addressed by their full multiplexer name."""

    def __init__(self, context: RuntimeContext, server: libtmux.Server | None = None):
        """Initialize tmux service.

        Args:
            context: Runtime context
            server: Existing libtmux server, a default server otherwise
        """
        self.context = context
        self.logger = context.get_logger(__name__, LogContext.SESSION)
        self._server = server if server is not None else libtmux.Server()

    async def has_session(self, name: str) -> bool:
        """Check whether a session exists. False when tmux is unavailable."""
        return await asyncio.to_thread(self._has_session, name)

    async def new_session(
        self,
        name: str,
        start_directory: Path,
        environment: dict[str, str] | None = None,
    ) -> None:
        """Create a detached session rooted at ``start_directory``.

        Raises:
            SessionError: If the session exists already or tmux fails
        """
        await asyncio.to_thread(self._new_session, name, start_directory, environment)

    async def kill_session(self, name: str) -> bool:
        """Kill a session. Returns False when it was already gone.

        Raises:
            SessionError: If tmux refuses to kill an existing session
        """
        return await asyncio.to_thread(self._kill_session, name)

    async def list_session_names(self, prefix: str | None = None) -> list[str]:
        """Names of live sessions, optionally filtered by prefix."""
        return await asyncio.to_thread(self._list_session_names, prefix)

    async def send_keys(self, name: str, command: str, enter: bool = True) -> None:
        """Type a command into the active pane of a session.

        Raises:
            SessionError: If the session does not exist or tmux fails
        """
        await asyncio.to_thread(self._send_keys, name, command, enter)

    def _has_session(self, name: str) -> bool:
        try:
            return bool(self._server.has_session(name, exact=True))
        except (LibTmuxException, OSError) as e:
            self.logger.debug("Tmux unavailable", session_name=name, error=str(e))
            return False

    def _new_session(
        self,
        name: str,
        start_directory: Path,
        environment: dict[str, str] | None,
    ) -> None:
        if self._has_session(name):
            raise SessionError(f"Session {name} already exists", {"session_name": name})

        log_session_operation(self.logger, "create", name, "starting")
        try:
            kwargs = {}
            if environment:
                kwargs["environment"] = environment
            self._server.new_session(
                session_name=name,
                start_directory=str(start_directory),
                attach=False,
                **kwargs,
            )
        except (LibTmuxException, OSError) as e:
            log_session_operation(self.logger, "create", name, "error", {"error": str(e)})
            raise SessionError(
                f"Failed to create session {name}: {e}",
                {"session_name": name, "start_directory": str(start_directory)},
            ) from e

        log_session_operation(self.logger, "create", name, "success")

    def _kill_session(self, name: str) -> bool:
        if not self._has_session(name):
            log_session_operation(self.logger, "kill", name, "skipped", {"reason": "absent"})
            return False

        try:
            self._server.kill_session(name)
        except (LibTmuxException, OSError) as e:
            # Lost a race with another process killing it.
            if not self._has_session(name):
                return False
            log_session_operation(self.logger, "kill", name, "error", {"error": str(e)})
            raise SessionError(
                f"Failed to kill session {name}: {e}", {"session_name": name}
            ) from e

        log_session_operation(self.logger, "kill", name, "success")
        return True

    def _list_session_names(self, prefix: str | None) -> list[str]:
        try:
            names = [session.session_name for session in self._server.sessions]
        except (LibTmuxException, OSError) as e:
            self.logger.debug("Tmux unavailable, no sessions listed", error=str(e))
            return []

        if prefix:
            names = [n for n in names if n and n.startswith(prefix)]
        log_session_list(self.logger, names, prefix or "")
        return names

    def _send_keys(self, name: str, command: str, enter: bool) -> None:
        try:
            session = self._server.sessions.get(session_name=name, default=None)
            if session is None:
                raise SessionError(f"Session {name} does not exist", {"session_name": name})
            session.active_pane.send_keys(command, enter=enter)
        except (LibTmuxException, OSError) as e:
            raise SessionError(
                f"Failed to send keys to session {name}: {e}", {"session_name": name}
            ) from e

        log_keys_sent(self.logger, name, command)
