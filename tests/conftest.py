"""Pytest configuration and fixtures for fleet agent tests."""

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Sequence, Union

import pytest
from mcp.types import (
    CallToolResult,
    ListResourcesResult,
    ListToolsResult,
    ReadResourceResult,
    Resource,
    TextContent,
    TextResourceContents,
    Tool,
)

from client.base_provider_client import BaseProviderClient
from client.mcp_client import MCPConnectionOptions
from client.types import (
    ConversationMessage,
    ConverseResponse,
    LLMTokenUsage,
    TextBlock,
    ToolUseBlock,
)

DEFAULT_TOOL_NAMES = ["getFleetOverview", "searchDevices"]


def make_tool(name: str, description: Optional[str] = "test") -> Tool:
    return Tool(name=name, description=description, inputSchema={"type": "object", "properties": {}})


def text_result(text: str, is_error: bool = False) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=text)], isError=is_error)


# ----------------------------------------------------------------------
# MCP session / transport fakes
# ----------------------------------------------------------------------


class FakeMCPServer:
    """Scriptable remote side of an MCP connection.

    Scripted outcomes are consumed in order; an Exception entry is raised,
    anything else is returned. Once a script runs dry the default applies.
    """

    def __init__(self) -> None:
        self.tools: list[Tool] = [make_tool(name) for name in DEFAULT_TOOL_NAMES]
        self.resources: list[Resource] = []
        self.list_resources_error: Optional[Exception] = None
        self.list_tools_error: Optional[Exception] = None
        self.initialize_outcomes: deque[Optional[Exception]] = deque()
        self.hang_on_initialize = False
        self.tool_outcomes: deque[Union[CallToolResult, Exception]] = deque()
        self.resource_outcomes: deque[Union[ReadResourceResult, Exception]] = deque()
        self.hang_on_call = False

        self.sessions_opened = 0
        self.sessions_closed = 0
        self.initialize_calls = 0
        self.tool_calls: list[tuple[str, dict[str, Any]]] = []
        self.resource_reads: list[str] = []
        self.http_urls: list[str] = []
        self.stdio_params: list[Any] = []

    def http_transport(self, url: str, *args: Any, **kwargs: Any) -> Any:
        self.http_urls.append(url)

        @asynccontextmanager
        async def transport() -> AsyncIterator[tuple[Any, Any, Any]]:
            yield object(), object(), lambda: None

        return transport()

    def stdio_transport(self, params: Any, *args: Any, **kwargs: Any) -> Any:
        self.stdio_params.append(params)

        @asynccontextmanager
        async def transport() -> AsyncIterator[tuple[Any, Any]]:
            yield object(), object()

        return transport()

    def session_factory(self, read: Any, write: Any, **kwargs: Any) -> "FakeSession":
        return FakeSession(self)


class FakeSession:
    """Stand-in for mcp.ClientSession backed by a FakeMCPServer."""

    def __init__(self, server: FakeMCPServer):
        self.server = server

    async def __aenter__(self) -> "FakeSession":
        self.server.sessions_opened += 1
        return self

    async def __aexit__(self, *exc_info: Any) -> bool:
        self.server.sessions_closed += 1
        return False

    async def initialize(self) -> None:
        self.server.initialize_calls += 1
        if self.server.hang_on_initialize:
            await asyncio.Event().wait()
        if self.server.initialize_outcomes:
            error = self.server.initialize_outcomes.popleft()
            if error is not None:
                raise error

    async def list_tools(self) -> ListToolsResult:
        if self.server.list_tools_error:
            raise self.server.list_tools_error
        return ListToolsResult(tools=list(self.server.tools))

    async def list_resources(self) -> ListResourcesResult:
        if self.server.list_resources_error:
            raise self.server.list_resources_error
        return ListResourcesResult(resources=list(self.server.resources))

    async def call_tool(self, name: str, arguments: Optional[dict[str, Any]] = None) -> CallToolResult:
        self.server.tool_calls.append((name, arguments or {}))
        if self.server.hang_on_call:
            await asyncio.Event().wait()
        if self.server.tool_outcomes:
            outcome = self.server.tool_outcomes.popleft()
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return text_result("result")

    async def read_resource(self, uri: Any) -> ReadResourceResult:
        self.server.resource_reads.append(str(uri))
        if self.server.resource_outcomes:
            outcome = self.server.resource_outcomes.popleft()
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return ReadResourceResult(
            contents=[TextResourceContents(uri=str(uri), text="resource-data")]
        )


@pytest.fixture
def fake_server(monkeypatch: pytest.MonkeyPatch) -> FakeMCPServer:
    """Patch the MCP SDK entry points used by MCPClient with a fake server."""
    server = FakeMCPServer()
    monkeypatch.setattr("client.mcp_client.ClientSession", server.session_factory)
    monkeypatch.setattr("client.mcp_client.streamablehttp_client", server.http_transport)
    monkeypatch.setattr("client.mcp_client.stdio_client", server.stdio_transport)
    return server


@pytest.fixture
def http_options() -> MCPConnectionOptions:
    """HTTP connection options with fast reconnect backoff."""
    return MCPConnectionOptions(
        transport="http",
        server_url="http://localhost:3001/mcp",
        reconnect_base_ms=1,
    )


# ----------------------------------------------------------------------
# Agent-side fakes
# ----------------------------------------------------------------------


class StubMCPClient:
    """Minimal MCPClient stand-in for agent tests."""

    def __init__(self, tool_names: Sequence[str] = ("getFleetOverview", "searchDevices")):
        self.tools = [make_tool(name) for name in tool_names]
        self.outcomes: deque[Union[CallToolResult, Exception]] = deque()
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def get_tools(self) -> list[Tool]:
        return list(self.tools)

    async def call_tool(self, name: str, arguments: Optional[dict[str, Any]] = None) -> CallToolResult:
        self.calls.append((name, arguments or {}))
        if self.outcomes:
            outcome = self.outcomes.popleft()
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return text_result(f"{name} ok")


class FakeBackend(BaseProviderClient):
    """Reasoning backend that replays queued responses."""

    def __init__(self) -> None:
        self.responses: deque[Union[ConverseResponse, Exception]] = deque()
        self.requests: list[dict[str, Any]] = []
        self.hang = False
        self._tool_use_seq = 0

    def queue_text(
        self, text: str, stop_reason: str = "end_turn", usage: Optional[LLMTokenUsage] = None
    ) -> None:
        self.responses.append(
            ConverseResponse(
                content=[TextBlock(text=text)],
                stop_reason=stop_reason,
                usage=usage or LLMTokenUsage(10, 5, 15),
            )
        )

    def queue_tool_use(self, *calls: tuple[str, dict[str, Any]], text: str = "") -> None:
        content: list[Any] = [TextBlock(text=text)] if text else []
        for name, tool_input in calls:
            self._tool_use_seq += 1
            content.append(ToolUseBlock(id=f"toolu_{self._tool_use_seq}", name=name, input=tool_input))
        self.responses.append(
            ConverseResponse(
                content=content, stop_reason="tool_use", usage=LLMTokenUsage(10, 5, 15)
            )
        )

    def queue_error(self, error: Exception) -> None:
        self.responses.append(error)

    async def initialize(self) -> None:
        pass

    async def converse(
        self,
        system: str,
        messages: Sequence[ConversationMessage],
        tools: Optional[list[dict[str, Any]]] = None,
        max_tokens: int = 8192,
        model: Optional[str] = None,
    ) -> ConverseResponse:
        self.requests.append(
            {"system": system, "messages": list(messages), "tools": tools, "max_tokens": max_tokens}
        )
        if self.hang:
            await asyncio.Event().wait()
        outcome = self.responses.popleft()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self) -> None:
        pass

    @property
    def name(self) -> str:
        return "Fake"


@pytest.fixture
def stub_mcp() -> StubMCPClient:
    return StubMCPClient()


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()
