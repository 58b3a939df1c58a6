"""Generation client integrations using LangChain."""

from agentrelay.providers.base import (
    GenerationClient,
    Message,
    ProviderConnectionError,
    ProviderError,
    ProviderModelError,
    ProviderRateLimitError,
)
from agentrelay.providers.factory import (
    create_chat_model,
    create_generation_client,
    get_default_model,
    parse_provider_string,
)
from agentrelay.providers.langchain_wrapper import LangChainGenerationClient
from agentrelay.providers.logging_wrapper import LoggingGenerationClient
from agentrelay.providers.mock import MockGenerationClient

__all__ = [
    "GenerationClient",
    "LangChainGenerationClient",
    "LoggingGenerationClient",
    "Message",
    "MockGenerationClient",
    "ProviderConnectionError",
    "ProviderError",
    "ProviderModelError",
    "ProviderRateLimitError",
    "create_chat_model",
    "create_generation_client",
    "get_default_model",
    "parse_provider_string",
]
