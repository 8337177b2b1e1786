"""Tests for the Anthropic backend adapter."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from client.anthropic_client import DEFAULT_BEDROCK_MODEL, DEFAULT_MODEL, AnthropicClient
from client.types import (
    ConversationMessage,
    LLMMessageRole,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from common.errors import AgentError, ErrorComponent, ErrorKind


def _sdk_response(*blocks, stop_reason="end_turn"):
    return SimpleNamespace(
        content=list(blocks),
        stop_reason=stop_reason,
        usage=SimpleNamespace(input_tokens=120, output_tokens=30),
        model="claude-test",
    )


def _client_with(response=None, error=None) -> AnthropicClient:
    client = AnthropicClient(api_key="test-key")
    sdk = MagicMock()
    sdk.messages.create = AsyncMock(return_value=response, side_effect=error)
    sdk.close = AsyncMock()
    client._client = sdk
    return client


def _http_response(status: int) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))


@pytest.mark.unit
class TestAnthropicClient:
    def test_default_models(self) -> None:
        assert AnthropicClient().default_model == DEFAULT_MODEL
        assert AnthropicClient(provider="bedrock").default_model == DEFAULT_BEDROCK_MODEL
        assert AnthropicClient(default_model="claude-x").default_model == "claude-x"

    def test_rejects_unknown_provider(self) -> None:
        with pytest.raises(ValueError):
            AnthropicClient(provider="vertex")

    def test_name(self) -> None:
        assert AnthropicClient().name == "Anthropic"
        assert AnthropicClient(provider="bedrock").name == "Anthropic (Bedrock)"

    @pytest.mark.asyncio
    async def test_converse_parses_text_and_tool_use(self) -> None:
        response = _sdk_response(
            SimpleNamespace(type="text", text="Checking the fleet."),
            SimpleNamespace(type="tool_use", id="toolu_1", name="getFleetOverview", input={}),
            stop_reason="tool_use",
        )
        client = _client_with(response)

        result = await client.converse(
            system="You are a fleet agent.",
            messages=[ConversationMessage(role=LLMMessageRole.USER, content=[TextBlock(text="Go")])],
            tools=[{"name": "getFleetOverview", "description": "", "input_schema": {"type": "object"}}],
        )

        assert result.text == "Checking the fleet."
        assert result.stop_reason == "tool_use"
        assert [t.name for t in result.tool_uses] == ["getFleetOverview"]
        assert result.usage.total_tokens == 150
        assert result.model == "claude-test"

        kwargs = client._client.messages.create.call_args.kwargs
        assert kwargs["model"] == DEFAULT_MODEL
        assert kwargs["system"] == "You are a fleet agent."
        assert kwargs["max_tokens"] == 8192
        assert kwargs["tools"][0]["name"] == "getFleetOverview"

    @pytest.mark.asyncio
    async def test_conversation_is_converted(self) -> None:
        client = _client_with(_sdk_response(SimpleNamespace(type="text", text="done")))
        messages = [
            ConversationMessage(role=LLMMessageRole.USER, content=[TextBlock(text="Go")]),
            ConversationMessage(
                role=LLMMessageRole.ASSISTANT,
                content=[
                    TextBlock(text=""),
                    ToolUseBlock(id="toolu_1", name="searchDevices", input={"q": "mac"}),
                ],
            ),
            ConversationMessage(
                role=LLMMessageRole.USER,
                content=[ToolResultBlock(tool_use_id="toolu_1", content="Error: denied", is_error=True)],
            ),
        ]

        await client.converse(system="", messages=messages)

        kwargs = client._client.messages.create.call_args.kwargs
        assert "system" not in kwargs
        assert "tools" not in kwargs
        sent = kwargs["messages"]
        assert sent[0] == {"role": "user", "content": [{"type": "text", "text": "Go"}]}
        # Empty text blocks are dropped
        assert sent[1]["content"] == [
            {"type": "tool_use", "id": "toolu_1", "name": "searchDevices", "input": {"q": "mac"}}
        ]
        assert sent[2]["content"][0]["is_error"] is True
        assert sent[2]["content"][0]["tool_use_id"] == "toolu_1"

    @pytest.mark.asyncio
    async def test_rate_limit_is_mapped(self) -> None:
        error = anthropic.RateLimitError("Too many requests", response=_http_response(429), body=None)
        client = _client_with(error=error)

        with pytest.raises(AgentError) as exc_info:
            await client.converse(system="", messages=[])

        assert exc_info.value.kind == ErrorKind.BACKEND
        assert exc_info.value.component == ErrorComponent.LLM
        assert "rate limit" in str(exc_info.value)
        assert exc_info.value.cause is error

    @pytest.mark.asyncio
    async def test_status_error_is_mapped(self) -> None:
        error = anthropic.InternalServerError("Overloaded", response=_http_response(529), body=None)
        client = _client_with(error=error)

        with pytest.raises(AgentError) as exc_info:
            await client.converse(system="", messages=[])

        assert exc_info.value.kind == ErrorKind.BACKEND
        assert exc_info.value.context["status_code"] == 529

    @pytest.mark.asyncio
    async def test_close_releases_sdk_client(self) -> None:
        client = _client_with(_sdk_response())
        sdk = client._client

        await client.close()

        sdk.close.assert_awaited_once()
        assert client._client is None
