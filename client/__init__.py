"""Client module for the MCP tool server and the reasoning backend."""

from .anthropic_client import AnthropicClient
from .base_provider_client import BaseProviderClient
from .mcp_client import ConnectionState, MCPClient, MCPConnectionOptions
from .timeouts import with_timeout
from .types import (
    Conversation,
    ConversationMessage,
    ConverseResponse,
    LLMMessageRole,
    LLMTokenUsage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)

__all__ = [
    # Reasoning backend
    "BaseProviderClient",
    "AnthropicClient",
    # Tool server
    "MCPClient",
    "MCPConnectionOptions",
    "ConnectionState",
    "with_timeout",
    # Conversation types
    "Conversation",
    "ConversationMessage",
    "ConverseResponse",
    "LLMMessageRole",
    "LLMTokenUsage",
    "TextBlock",
    "ToolUseBlock",
    "ToolResultBlock",
]
