"""MCP connection client - owns the session to the device-management tool server.

Responsibilities:
- Open the transport (stdio subprocess or streamable HTTP) and the MCP session
- Discover tools and resources after every (re)connect
- Call tools and read resources under a per-call deadline
- Reconnect with exponential backoff when the transport drops
"""

import asyncio
import json
import logging
import os
import re
import time
from contextlib import AsyncExitStack
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal, Optional

import anyio
import httpx
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client
from mcp.types import CallToolResult, Implementation, ReadResourceResult, Resource, Tool
from pydantic import BaseModel, Field, model_validator

from client.timeouts import with_timeout
from common.errors import AgentError, ErrorComponent, ErrorKind
from telemetry.metrics import record_mcp_connect_duration, record_mcp_tool_call

if TYPE_CHECKING:
    from config import MCPConfig

logger = logging.getLogger(__name__)

CLIENT_INFO = Implementation(name="fleet-agent", version="0.1.0")

_TRANSPORT_ERROR_PATTERN = re.compile(
    r"ECONNREFUSED|ECONNRESET|EPIPE|connection reset|connection refused|broken pipe"
    r"|closed|disconnect",
    re.IGNORECASE,
)

_TRANSPORT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    ConnectionError,
    EOFError,
    anyio.ClosedResourceError,
    anyio.BrokenResourceError,
    anyio.EndOfStream,
    httpx.TransportError,
)


def is_transport_error(error: BaseException) -> bool:
    """Whether an error means the connection itself is gone."""
    if isinstance(error, BaseExceptionGroup):
        return any(is_transport_error(e) for e in error.exceptions)
    if isinstance(error, _TRANSPORT_EXCEPTIONS):
        return True
    return bool(_TRANSPORT_ERROR_PATTERN.search(str(error)))


class ConnectionState(str, Enum):
    """Connection lifecycle states."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class MCPConnectionOptions(BaseModel):
    """How to reach the tool server and how patient to be with it."""

    transport: Literal["stdio", "http"] = "stdio"
    # stdio
    command: Optional[str] = None
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    # http
    server_url: Optional[str] = None
    # timeouts & reconnection
    connect_timeout_ms: int = Field(30_000, gt=0)
    tool_timeout_ms: int = Field(120_000, gt=0)
    max_reconnect_attempts: int = Field(5, ge=0)
    reconnect_base_ms: int = Field(1_000, ge=0)

    @model_validator(mode="after")
    def _check_transport_params(self) -> "MCPConnectionOptions":
        if self.transport == "stdio" and not self.command:
            raise ValueError("command is required for the stdio transport")
        if self.transport == "http" and not self.server_url:
            raise ValueError("server_url is required for the http transport")
        return self


class MCPClient:
    """Single logical connection to an MCP tool server.

    The client has no internal locking; callers must not share one instance
    between concurrent agent runs.
    """

    def __init__(self, options: MCPConnectionOptions):
        self.options = options

        self.session: Optional[ClientSession] = None
        self._exit_stack: Optional[AsyncExitStack] = None
        self._state = ConnectionState.DISCONNECTED
        self._tools: dict[str, Tool] = {}
        self._resources: dict[str, Resource] = {}
        self._reconnect_attempt = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect and discover capabilities. No-op when already connected."""
        if self._state == ConnectionState.CONNECTED:
            return
        await self._establish()
        self._reconnect_attempt = 0

    async def _establish(self) -> None:
        stack = AsyncExitStack()
        start = time.monotonic()
        try:
            session = await with_timeout(
                self._open_session(stack),
                self.options.connect_timeout_ms,
                "mcp.connect",
                ErrorComponent.MCP,
            )
        except Exception as e:
            await self._close_stack(stack)
            if isinstance(e, AgentError):
                raise
            raise AgentError(
                "Failed to connect to MCP server",
                kind=ErrorKind.CONNECTION,
                component=ErrorComponent.MCP,
                operation="connect",
                context={"transport": self.options.transport},
            ) from e

        self._exit_stack = stack
        self.session = session
        self._state = ConnectionState.CONNECTED
        record_mcp_connect_duration((time.monotonic() - start) * 1000)
        logger.info("Connected to MCP server")

        try:
            await self.discover()
        except Exception as e:
            logger.error(f"Tool discovery failed, dropping connection: {e}")
            await self._teardown()
            if isinstance(e, AgentError):
                raise
            raise AgentError(
                "Failed to discover MCP tools",
                kind=ErrorKind.CONNECTION,
                component=ErrorComponent.MCP,
                operation="discover",
            ) from e

    async def _open_session(self, stack: AsyncExitStack) -> ClientSession:
        """Open transport and session on ``stack`` and run the handshake."""
        if self.options.transport == "stdio":
            assert self.options.command is not None
            logger.info("Starting MCP server subprocess...")
            params = StdioServerParameters(
                command=self.options.command,
                args=self.options.args,
                env={**os.environ, **self.options.env},
            )
            read, write = await stack.enter_async_context(stdio_client(params))
        else:
            assert self.options.server_url is not None
            logger.info(f"Connecting to MCP server at {self.options.server_url}...")
            read, write, _ = await stack.enter_async_context(
                streamablehttp_client(self.options.server_url)
            )

        session = await stack.enter_async_context(
            ClientSession(read, write, client_info=CLIENT_INFO)
        )
        await session.initialize()
        return session

    async def disconnect(self) -> None:
        """Close the session and forget discovered capabilities. Idempotent."""
        await self._teardown()
        logger.info("Disconnected from MCP server")

    async def _teardown(self) -> None:
        stack = self._exit_stack
        self._exit_stack = None
        self.session = None
        self._state = ConnectionState.DISCONNECTED
        self._tools.clear()
        self._resources.clear()
        if stack is not None:
            await self._close_stack(stack)

    async def _close_stack(self, stack: AsyncExitStack) -> None:
        try:
            await stack.aclose()
        except Exception as e:
            # Transports may already be dead; nothing left to release
            logger.warning(f"MCP cleanup issue (non-critical): {e}")

    async def _reconnect(self) -> None:
        self._reconnect_attempt += 1
        max_attempts = self.options.max_reconnect_attempts

        if self._reconnect_attempt > max_attempts:
            raise AgentError(
                f"Max reconnect attempts ({max_attempts}) exceeded",
                kind=ErrorKind.RECONNECT_EXHAUSTED,
                component=ErrorComponent.MCP,
                operation="reconnect",
                context={"attempts": self._reconnect_attempt},
            )

        delay_ms = self.options.reconnect_base_ms * 2 ** (self._reconnect_attempt - 1)
        logger.warning(
            f"MCP reconnect attempt {self._reconnect_attempt}/{max_attempts} in {delay_ms}ms..."
        )
        await asyncio.sleep(delay_ms / 1000)

        await self._teardown()
        await self._establish()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def discover(self) -> None:
        """Replace the tool and resource catalogs from the server."""
        session = self._require_session("discover", {})

        tools_result = await session.list_tools()
        self._tools = {tool.name: tool for tool in tools_result.tools}
        logger.info(f"Discovered {len(self._tools)} tools")

        self._resources = {}
        try:
            resources_result = await session.list_resources()
        except Exception as e:
            logger.warning(f"Server does not support resources - skipping ({e})")
            return
        self._resources = {str(r.uri): r for r in resources_result.resources}
        logger.info(f"Discovered {len(self._resources)} resources")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _require_session(self, operation: str, context: dict[str, Any]) -> ClientSession:
        if self._state != ConnectionState.CONNECTED or self.session is None:
            raise AgentError(
                "Not connected to MCP server",
                kind=ErrorKind.NOT_CONNECTED,
                component=ErrorComponent.MCP,
                operation=operation,
                context=context,
            )
        return self.session

    async def _invoke_tool(self, name: str, arguments: dict[str, Any]) -> CallToolResult:
        session = self._require_session("callTool", {"tool": name})
        return await with_timeout(
            session.call_tool(name, arguments),
            self.options.tool_timeout_ms,
            "mcp.callTool",
            ErrorComponent.MCP,
        )

    async def call_tool(
        self, name: str, arguments: Optional[dict[str, Any]] = None
    ) -> CallToolResult:
        """Call a tool by name.

        A transport failure triggers one reconnect and one retry; the retry's
        own failure propagates unchanged.
        """
        self._require_session("callTool", {"tool": name})
        if name not in self._tools:
            raise AgentError(
                f"Unknown tool: {name}",
                kind=ErrorKind.UNKNOWN_TOOL,
                component=ErrorComponent.MCP,
                operation="callTool",
                context={"tool": name},
            )

        args = arguments or {}
        logger.debug(f"Calling tool: {name} with args: {args}")

        start = time.monotonic()
        try:
            result = await self._invoke_tool(name, args)
        except Exception as e:
            if not is_transport_error(e):
                record_mcp_tool_call(name, (time.monotonic() - start) * 1000, True)
                raise
            logger.warning(f"Transport error on call_tool({name}), attempting reconnect...")
            await self._reconnect()

            retry_start = time.monotonic()
            try:
                result = await self._invoke_tool(name, args)
            except Exception:
                record_mcp_tool_call(name, (time.monotonic() - retry_start) * 1000, True)
                raise
            self._reconnect_attempt = 0
            record_mcp_tool_call(name, (time.monotonic() - retry_start) * 1000, False)
            return result

        record_mcp_tool_call(name, (time.monotonic() - start) * 1000, False)
        return result

    async def _fetch_resource(self, uri: str) -> ReadResourceResult:
        session = self._require_session("readResource", {"uri": uri})
        return await with_timeout(
            session.read_resource(uri),  # type: ignore[arg-type]
            self.options.tool_timeout_ms,
            "mcp.readResource",
            ErrorComponent.MCP,
        )

    async def read_resource(self, uri: str) -> str:
        """Read a resource and return its text."""
        self._require_session("readResource", {"uri": uri})
        try:
            result = await self._fetch_resource(uri)
        except Exception as e:
            if not is_transport_error(e):
                raise
            logger.warning(f"Transport error on read_resource({uri}), attempting reconnect...")
            await self._reconnect()
            result = await self._fetch_resource(uri)
            self._reconnect_attempt = 0
        return _resource_text(result)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def get_tools(self) -> list[Tool]:
        """Tools discovered on the current connection."""
        return list(self._tools.values())

    def get_resources(self) -> list[Resource]:
        """Resources discovered on the current connection."""
        return list(self._resources.values())

    def get_tool_count(self) -> int:
        return len(self._tools)

    def __repr__(self) -> str:
        target = self.options.command if self.options.transport == "stdio" else self.options.server_url
        return (
            f"MCPClient({self.options.transport}:{target}, {self._state.value}, "
            f"{len(self._tools)} tools, reconnect_attempt={self._reconnect_attempt})"
        )


def _resource_text(result: ReadResourceResult) -> str:
    first = result.contents[0] if result.contents else None
    text = getattr(first, "text", None)
    if isinstance(text, str):
        return text
    return json.dumps([content.model_dump(mode="json") for content in result.contents])


def build_mcp_options(config: "MCPConfig") -> MCPConnectionOptions:
    """Build connection options from application config."""
    common: dict[str, Any] = {
        "connect_timeout_ms": config.connect_timeout_ms,
        "tool_timeout_ms": config.tool_timeout_ms,
        "max_reconnect_attempts": config.max_reconnect_attempts,
        "reconnect_base_ms": config.reconnect_base_ms,
    }
    if config.transport == "http":
        return MCPConnectionOptions(transport="http", server_url=config.server_url, **common)

    env = {
        "MDM_URL": config.mdm_url or "",
        "MDM_CLIENT_ID": config.mdm_client_id or "",
        "MDM_CLIENT_SECRET": config.mdm_client_secret or "",
    }
    return MCPConnectionOptions(
        transport="stdio",
        command=config.server_command,
        args=[config.server_path or ""],
        env=env,
        **common,
    )
