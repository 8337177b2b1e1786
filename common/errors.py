"""Error type shared by the MCP client, the reasoning backend and the agent loop.

Every fatal condition is raised as an ``AgentError`` tagged with an
``ErrorKind``. Callers branch on ``error.kind`` rather than on subclasses.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Kinds of failure the core can surface."""

    CONNECTION = "connection"
    TIMEOUT = "timeout"
    UNKNOWN_TOOL = "unknown_tool"
    NOT_CONNECTED = "not_connected"
    RECONNECT_EXHAUSTED = "reconnect_exhausted"
    BACKEND = "backend"
    TOOL_EXECUTION = "tool_execution"
    CONFIG = "config"


class ErrorComponent(str, Enum):
    """Component that raised the error."""

    MCP = "mcp"
    LLM = "llm"
    CONFIG = "config"
    AGENT = "agent"


class AgentError(Exception):
    """Structured error carrying kind, component, operation and context."""

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind,
        component: ErrorComponent,
        operation: str,
        context: Optional[dict[str, Any]] = None,
        timeout_ms: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.component = component
        self.operation = operation
        self.context = context or {}
        self.timeout_ms = timeout_ms

    @property
    def cause(self) -> Optional[BaseException]:
        """Exception this error was raised from, if any."""
        return self.__cause__

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logs and CLI output."""
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
            "component": self.component.value,
            "operation": self.operation,
            "context": self.context,
        }
        if self.timeout_ms is not None:
            data["timeout_ms"] = self.timeout_ms
        if self.cause is not None:
            data["cause"] = {"type": type(self.cause).__name__, "message": str(self.cause)}
        return data

    def __repr__(self) -> str:
        return (
            f"AgentError(kind={self.kind.value}, component={self.component.value}, "
            f"operation={self.operation!r}, message={self.message!r})"
        )


def is_kind(error: BaseException, kind: ErrorKind) -> bool:
    """Check whether an exception is an AgentError of the given kind."""
    return isinstance(error, AgentError) and error.kind == kind


def format_error_chain(error: BaseException) -> str:
    """Render an error and its cause chain, one line per link."""
    lines = [f"{type(error).__name__}: {error}"]
    seen = {id(error)}
    current = error.__cause__
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        lines.append(f"  caused by {type(current).__name__}: {current}")
        current = current.__cause__
    return "\n".join(lines)
