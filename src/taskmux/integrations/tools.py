"""Request/response client for external tool-protocol servers.

Each call spawns the configured server command, writes one JSON request to
its stdin and reads one JSON object from its stdout. A persistent connection
can replace this later without changing :class:`ToolClient`.
"""

import asyncio
import json
import os
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..config import ToolServerConfig
from ..core.context import RuntimeContext
from ..utils.logging import LogContext, ToolError, ToolTimeoutError


@dataclass
class ToolResult:
    """Decoded response of one tool call."""

    server: str
    tool: str
    data: dict[str, Any] = field(default_factory=dict)
    stderr: str = ""


class ToolClient(Protocol):
    """Anything that can answer a typed tool call."""

    async def call(
        self, server: str, tool: str, arguments: dict[str, Any] | None = None
    ) -> ToolResult: ...


class SubprocessToolClient:
    """Spawns one server process per call."""

    def __init__(self, context: RuntimeContext):
        self.context = context
        self.servers: dict[str, ToolServerConfig] = context.config.tool_servers
        self.default_timeout = context.config.tool_timeout
        self.logger = context.get_logger(__name__, LogContext.TOOLS)

    async def call(
        self, server: str, tool: str, arguments: dict[str, Any] | None = None
    ) -> ToolResult:
        """Run one tool call.

        Raises:
            ToolTimeoutError: If the server does not answer within its timeout
            ToolError: For unknown servers, failed processes or invalid responses
        """
        server_config = self.servers.get(server)
        if server_config is None:
            raise ToolError(f"Unknown tool server: {server}", {"server": server})

        timeout = server_config.timeout or self.default_timeout
        request = json.dumps({"tool": tool, "arguments": arguments or {}}).encode("utf-8")
        cmd = [server_config.command, *server_config.args]
        log_fields = {"server": server, "tool": tool}

        self.logger.debug("Calling tool", timeout=timeout, **log_fields)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **server_config.env},
            )
        except OSError as e:
            raise ToolError(
                f"Failed to start tool server {server}: {e}", {**log_fields, "command": cmd}
            ) from e

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(request), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            await self._kill(process)
            self.logger.warning("Tool call timed out", timeout=timeout, **log_fields)
            raise ToolTimeoutError(
                f"Tool {tool} on {server} timed out after {timeout}s",
                {**log_fields, "timeout": timeout},
            ) from e

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")

        if process.returncode != 0:
            raise ToolError(
                f"Tool {tool} on {server} exited with {process.returncode}: {stderr.strip()}",
                {**log_fields, "returncode": process.returncode},
            )

        try:
            data = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise ToolError(
                f"Tool {tool} on {server} returned invalid JSON: {e}", log_fields
            ) from e
        if not isinstance(data, dict):
            raise ToolError(
                f"Tool {tool} on {server} returned {type(data).__name__}, expected object",
                log_fields,
            )

        self.logger.debug("Tool call completed", **log_fields)
        return ToolResult(server=server, tool=tool, data=data, stderr=stderr)

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()
