"""Conversation types shared by the reasoning backend and the agent loop.

These are provider-neutral; ``AnthropicClient`` converts them to and from the
SDK's request and response shapes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field


class LLMMessageRole(str, Enum):
    """Message roles in a conversation."""

    USER = "user"
    ASSISTANT = "assistant"


class TextBlock(BaseModel):
    """Plain text content."""

    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    """Tool invocation requested by the model."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    """Result of a tool invocation, sent back in a user turn."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str
    is_error: bool = False


ContentBlock = Annotated[
    Union[TextBlock, ToolUseBlock, ToolResultBlock], Field(discriminator="type")
]


def join_text(blocks: list[ContentBlock]) -> str:
    """Concatenate the text blocks of a message, one per line."""
    return "\n".join(block.text for block in blocks if isinstance(block, TextBlock))


class ConversationMessage(BaseModel):
    """One turn of the conversation."""

    role: LLMMessageRole
    content: list[ContentBlock]

    @property
    def text(self) -> str:
        return join_text(self.content)


class Conversation:
    """Append-only, ordered conversation state owned by one agent run."""

    def __init__(self) -> None:
        self._messages: list[ConversationMessage] = []

    def append(self, role: LLMMessageRole, content: list[ContentBlock]) -> ConversationMessage:
        message = ConversationMessage(role=role, content=list(content))
        self._messages.append(message)
        return message

    def add_user_text(self, text: str) -> ConversationMessage:
        return self.append(LLMMessageRole.USER, [TextBlock(text=text)])

    @property
    def messages(self) -> tuple[ConversationMessage, ...]:
        return tuple(self._messages)

    def last_assistant_text(self) -> str:
        """Text of the most recent assistant turn, or "" if there is none."""
        for message in reversed(self._messages):
            if message.role == LLMMessageRole.ASSISTANT:
                return message.text
        return ""

    def __len__(self) -> int:
        return len(self._messages)


@dataclass
class LLMTokenUsage:
    """Token usage information."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: "LLMTokenUsage") -> None:
        """Accumulate another usage record into this one."""
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.total_tokens = self.input_tokens + self.output_tokens


class ConverseResponse(BaseModel):
    """Result of one request to the reasoning backend."""

    content: list[ContentBlock] = Field(default_factory=list)
    stop_reason: Optional[str] = None
    usage: Optional[LLMTokenUsage] = None
    model: Optional[str] = None

    @property
    def text(self) -> str:
        return join_text(self.content)

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]
