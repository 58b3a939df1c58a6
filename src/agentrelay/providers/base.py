"""Base protocol and types for generation clients."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Protocol, TypedDict

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence


class Message(TypedDict):
    """A single role-tagged message.

    Attributes:
        role: Message role - "system", "user" or "assistant".
        content: Message content text.
    """

    role: Literal["system", "user", "assistant"]
    content: str


class GenerationClient(Protocol):
    """Protocol for text generation clients.

    The orchestrator calls exactly one of these methods per stage. Both
    must honour asyncio cancellation so an in-flight call can be aborted.
    """

    async def complete(self, messages: Sequence[Message], max_output_tokens: int) -> str:
        """Generate the full response for ``messages``.

        Args:
            messages: Ordered conversation messages.
            max_output_tokens: Upper bound on generated tokens.

        Returns:
            Generated text.

        Raises:
            ProviderError: If the request fails.
        """
        ...

    def complete_streaming(
        self, messages: Sequence[Message], max_output_tokens: int
    ) -> AsyncIterator[str]:
        """Generate the response incrementally.

        Same semantics as ``complete``; concatenating the fragments yields the
        full output.
        """
        ...

    async def close(self) -> None:
        """Release any held resources."""
        ...


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        self.message = message
        super().__init__(f"[{provider}] {message}")


class ProviderConnectionError(ProviderError):
    """Raised when connection to the provider fails."""

    pass


class ProviderRateLimitError(ProviderError):
    """Raised when rate limit or quota is exceeded."""

    pass


class ProviderModelError(ProviderError):
    """Raised when the requested model is unavailable."""

    pass
