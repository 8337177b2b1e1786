"""Deadline wrapper for awaitable operations."""

import asyncio
from typing import Awaitable, TypeVar

from common.errors import AgentError, ErrorComponent, ErrorKind

T = TypeVar("T")


async def with_timeout(
    operation: Awaitable[T],
    timeout_ms: int,
    label: str,
    component: ErrorComponent = ErrorComponent.MCP,
) -> T:
    """Await ``operation`` for at most ``timeout_ms`` milliseconds.

    The operation runs in the calling task. When the deadline fires the
    operation is cancelled and an ``AgentError`` of kind TIMEOUT is raised;
    any late result is discarded. Errors raised by the operation itself
    propagate unchanged.

    Args:
        operation: Coroutine or other awaitable to run
        timeout_ms: Deadline in milliseconds
        label: Operation name reported in the error (e.g. "mcp.callTool")
        component: Component reported in the error
    """
    deadline = asyncio.timeout(timeout_ms / 1000)
    try:
        async with deadline:
            return await operation
    except TimeoutError as e:
        if not deadline.expired():
            raise
        raise AgentError(
            f"{label} timed out after {timeout_ms}ms",
            kind=ErrorKind.TIMEOUT,
            component=component,
            operation=label,
            timeout_ms=timeout_ms,
        ) from e
