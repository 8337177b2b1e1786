"""Anthropic Claude backend, reached directly or through AWS Bedrock."""

from typing import Any, Optional, Sequence, Union

import anthropic
from anthropic import AsyncAnthropic, AsyncAnthropicBedrock
from anthropic.types import Message as AnthropicMessage

from common.errors import AgentError, ErrorComponent, ErrorKind

from .base_provider_client import BaseProviderClient
from .types import (
    ContentBlock,
    ConversationMessage,
    ConverseResponse,
    LLMTokenUsage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)


DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_BEDROCK_MODEL = "us.anthropic.claude-sonnet-4-20250514-v1:0"


class AnthropicClient(BaseProviderClient):
    """Claude client exposing the single ``converse`` operation."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: Optional[str] = None,
        provider: str = "anthropic",
        aws_region: Optional[str] = None,
    ):
        """Initialize Anthropic client.

        Args:
            api_key: Anthropic API key (direct provider only; falls back to
                ANTHROPIC_API_KEY in the environment)
            default_model: Default model to use
            provider: "anthropic" for the direct API, "bedrock" for AWS Bedrock
            aws_region: AWS region for the Bedrock provider
        """
        if provider not in ("anthropic", "bedrock"):
            raise ValueError(f"Unsupported provider: {provider}")
        self.api_key = api_key
        self.provider = provider
        self.aws_region = aws_region
        self.default_model = default_model or (
            DEFAULT_BEDROCK_MODEL if provider == "bedrock" else DEFAULT_MODEL
        )
        self._client: Optional[Union[AsyncAnthropic, AsyncAnthropicBedrock]] = None

    async def initialize(self) -> None:
        """Create the SDK client."""
        if self.provider == "bedrock":
            self._client = AsyncAnthropicBedrock(aws_region=self.aws_region)
        else:
            self._client = AsyncAnthropic(api_key=self.api_key)

    def _convert_block_to_anthropic(self, block: ContentBlock) -> Optional[dict[str, Any]]:
        if isinstance(block, TextBlock):
            # The API rejects empty text blocks
            if not block.text:
                return None
            return {"type": "text", "text": block.text}
        if isinstance(block, ToolUseBlock):
            return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
        return {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content": block.content,
            "is_error": block.is_error,
        }

    def _convert_messages_to_anthropic(
        self, messages: Sequence[ConversationMessage]
    ) -> list[dict[str, Any]]:
        """Convert our conversation to Anthropic's message format."""
        anthropic_messages: list[dict[str, Any]] = []
        for msg in messages:
            content = [
                converted
                for converted in (self._convert_block_to_anthropic(b) for b in msg.content)
                if converted is not None
            ]
            anthropic_messages.append({"role": msg.role.value, "content": content})
        return anthropic_messages

    def _parse_anthropic_response(self, response: AnthropicMessage, model: str) -> ConverseResponse:
        """Parse Anthropic response into our format."""
        content: list[ContentBlock] = []
        for block in response.content:
            block_type = getattr(block, "type", None)
            if block_type == "text":
                content.append(TextBlock(text=block.text))
            elif block_type == "tool_use":
                content.append(
                    ToolUseBlock(id=block.id, name=block.name, input=dict(block.input or {}))
                )

        usage = None
        if getattr(response, "usage", None):
            usage = LLMTokenUsage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            )

        return ConverseResponse(
            content=content,
            stop_reason=response.stop_reason,
            usage=usage,
            model=getattr(response, "model", None) or model,
        )

    async def converse(
        self,
        system: str,
        messages: Sequence[ConversationMessage],
        tools: Optional[list[dict[str, Any]]] = None,
        max_tokens: int = 8192,
        model: Optional[str] = None,
    ) -> ConverseResponse:
        """Send one request to Claude."""
        if not self._client:
            await self.initialize()
        if not self._client:
            raise RuntimeError("Anthropic client not initialized")

        model = model or self.default_model
        request_params: dict[str, Any] = {
            "model": model,
            "messages": self._convert_messages_to_anthropic(messages),
            "max_tokens": max_tokens,
        }
        if system:
            request_params["system"] = system
        if tools:
            request_params["tools"] = tools

        try:
            response = await self._client.messages.create(**request_params)
        except anthropic.RateLimitError as e:
            raise AgentError(
                f"Claude rate limit exceeded: {e}",
                kind=ErrorKind.BACKEND,
                component=ErrorComponent.LLM,
                operation="converse",
                context={"model": model, "status_code": e.status_code},
            ) from e
        except anthropic.APIStatusError as e:
            raise AgentError(
                f"Claude request failed with status {e.status_code}: {e.message}",
                kind=ErrorKind.BACKEND,
                component=ErrorComponent.LLM,
                operation="converse",
                context={"model": model, "status_code": e.status_code},
            ) from e
        except anthropic.APIError as e:
            raise AgentError(
                f"Claude request failed: {e}",
                kind=ErrorKind.BACKEND,
                component=ErrorComponent.LLM,
                operation="converse",
                context={"model": model},
            ) from e

        return self._parse_anthropic_response(response, model)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.close()
            self._client = None

    @property
    def name(self) -> str:
        """Client name."""
        return "Anthropic (Bedrock)" if self.provider == "bedrock" else "Anthropic"
