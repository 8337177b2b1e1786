"""Base interface for reasoning backends."""

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from client.types import ConversationMessage, ConverseResponse


class BaseProviderClient(ABC):
    """Abstract base class for reasoning-backend clients."""

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the client (create SDK clients, etc.)."""
        pass

    @abstractmethod
    async def converse(
        self,
        system: str,
        messages: Sequence[ConversationMessage],
        tools: Optional[list[dict[str, Any]]] = None,
        max_tokens: int = 8192,
        model: Optional[str] = None,
    ) -> ConverseResponse:
        """Send the conversation and return the model's next turn.

        Args:
            system: System prompt
            messages: Full conversation so far, oldest first
            tools: Tool catalog in the backend's schema shape
            max_tokens: Maximum output tokens for this turn
            model: Model to use (if None, uses the client's default)

        Returns:
            ConverseResponse with content blocks, stop reason and usage.
            The call is cancellable: cancelling the awaiting task abandons
            the request.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider client name."""
        pass
