"""LangChain adapter for the generation client protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from agentrelay.providers.base import (
    Message,
    ProviderConnectionError,
    ProviderError,
    ProviderModelError,
    ProviderRateLimitError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from langchain_core.language_models import BaseChatModel
    from langchain_core.runnables import Runnable


class LangChainGenerationClient:
    """Adapts LangChain chat models to the GenerationClient protocol.

    Any LangChain chat model works, which keeps LangSmith tracing and the
    provider SDK details out of the orchestrator.

    Attributes:
        provider: Provider name, used in error messages and for mapping the
            output bound onto the provider's parameter name.
    """

    def __init__(self, model: BaseChatModel, provider: str = "langchain") -> None:
        """Initialize with a LangChain chat model.

        Args:
            model: Configured LangChain chat model instance.
            provider: Provider identifier (e.g., "openai", "ollama").
        """
        self._model = model
        self.provider = provider

    async def complete(self, messages: Sequence[Message], max_output_tokens: int) -> str:
        """Generate a completion from the given messages.

        Args:
            messages: List of conversation messages.
            max_output_tokens: Upper bound on generated tokens.

        Returns:
            Generated text.

        Raises:
            ProviderError: If completion fails.
        """
        lc_messages = [self._to_langchain_message(m) for m in messages]
        bound = self._bounded_model(max_output_tokens)

        try:
            response: AIMessage = await bound.ainvoke(lc_messages)
        except Exception as e:
            raise self._map_error(e) from e

        return _content_text(response.content)

    async def complete_streaming(
        self, messages: Sequence[Message], max_output_tokens: int
    ) -> AsyncIterator[str]:
        """Stream completion fragments for the given messages.

        Raises:
            ProviderError: If the stream fails.
        """
        lc_messages = [self._to_langchain_message(m) for m in messages]
        bound = self._bounded_model(max_output_tokens)

        try:
            async for chunk in bound.astream(lc_messages):
                text = _content_text(chunk.content)
                if text:
                    yield text
        except Exception as e:
            raise self._map_error(e) from e

    def _bounded_model(self, max_output_tokens: int) -> Runnable[Any, Any]:
        """Apply the output bound using the provider's parameter name."""
        if self.provider == "ollama":
            # A per-call options dict would drop the model's other Ollama options
            bounded: BaseChatModel = self._model.model_copy(
                update={"num_predict": max_output_tokens}
            )
            return bounded
        return self._model.bind(max_tokens=max_output_tokens)

    def _map_error(self, error: Exception) -> ProviderError:
        """Wrap an SDK exception in the matching ProviderError subclass."""
        if isinstance(error, ProviderError):
            return error
        name = type(error).__name__
        message = f"Completion failed: {error}"
        if "RateLimit" in name or "Quota" in name:
            return ProviderRateLimitError(self.provider, message)
        if "Connect" in name or "Timeout" in name:
            return ProviderConnectionError(self.provider, message)
        if "NotFound" in name:
            return ProviderModelError(self.provider, message)
        return ProviderError(self.provider, message)

    def _to_langchain_message(self, msg: Message) -> Any:
        """Convert our Message to LangChain message."""
        role = msg["role"]
        content = msg["content"]

        if role == "system":
            return SystemMessage(content=content)
        elif role == "user":
            return HumanMessage(content=content)
        elif role == "assistant":
            return AIMessage(content=content)
        else:
            raise ValueError(f"Unknown role: {role}")

    async def close(self) -> None:
        """Close the underlying model if it supports it."""
        close_method = getattr(self._model, "aclose", None) or getattr(self._model, "close", None)
        if callable(close_method):
            result = close_method()
            if hasattr(result, "__await__"):
                await result

    async def __aenter__(self) -> LangChainGenerationClient:
        """Enter async context."""
        return self

    async def __aexit__(self, *_: object) -> None:
        """Exit async context."""
        await self.close()


def _content_text(content: Any) -> str:
    """Flatten LangChain message content (str or list of parts) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return str(content)
