"""Factory for creating generation clients.

Uses LangChain's init_chat_model abstraction for unified provider instantiation.
Provider-specific configuration (endpoints, API keys from the environment) is
applied as pre-processing before the unified call.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

from agentrelay.observability.logging import get_logger
from agentrelay.providers.base import ProviderError
from agentrelay.providers.langchain_wrapper import LangChainGenerationClient

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

log = get_logger(__name__)

# Provider default models - None means model must be explicitly specified
PROVIDER_DEFAULTS: dict[str, str | None] = {
    "openai": "gpt-4o",
    "azure_openai": None,  # Deployment name is account-specific
    "ollama": "llama3.2",
    "anthropic": "claude-sonnet-4-20250514",
}

_KNOWN_PROVIDERS = frozenset(PROVIDER_DEFAULTS)

_PROVIDER_ALIASES = {
    "azure": "azure_openai",
    "azureopenai": "azure_openai",
}

DEFAULT_OLLAMA_HOST = "http://localhost:11434"
DEFAULT_AZURE_API_VERSION = "2024-10-21"


def get_default_model(provider_name: str) -> str | None:
    """Get default model for a provider.

    Args:
        provider_name: Provider identifier.

    Returns:
        Default model name, or None if provider requires explicit model.
    """
    return PROVIDER_DEFAULTS.get(_normalize_provider(provider_name))


def parse_provider_string(provider_string: str) -> tuple[str, str]:
    """Split ``"provider/model"`` into its parts.

    A bare provider name resolves to that provider's default model.

    Raises:
        ProviderError: If no model is given and the provider has no default.
    """
    if "/" in provider_string:
        provider_name, model = provider_string.split("/", 1)
        return _normalize_provider(provider_name), model

    provider_name = _normalize_provider(provider_string)
    model = get_default_model(provider_name)
    if model is None:
        raise ProviderError(
            provider_name,
            f"Provider '{provider_name}' requires explicit model. "
            f"Use {provider_name}/<model-name>",
        )
    return provider_name, model


def create_chat_model(provider_name: str, model: str, **kwargs: Any) -> BaseChatModel:
    """Create a LangChain BaseChatModel.

    Args:
        provider_name: Provider identifier (openai, azure_openai, ollama, anthropic).
        model: Model name, or deployment name for Azure OpenAI.
        **kwargs: Additional provider-specific options.

    Returns:
        Configured BaseChatModel.

    Raises:
        ProviderError: If provider unavailable or misconfigured.
    """
    provider = _normalize_provider(provider_name)

    if provider not in _KNOWN_PROVIDERS:
        log.error("provider_unknown", provider=provider)
        raise ProviderError(provider, f"Unknown provider: {provider}")

    kwargs = _preprocess_provider_kwargs(provider, model, kwargs)

    try:
        chat_model = _init_chat_model_safe(provider, model, **kwargs)
    except ImportError as e:
        package = _get_package_for_provider(provider)
        log.error("provider_import_error", provider=provider, package=package)
        raise ProviderError(provider, f"{package} not installed. Run: pip install {package}") from e

    log.info("chat_model_created", provider=provider, model=model)
    return chat_model


def create_generation_client(provider_string: str, **kwargs: Any) -> LangChainGenerationClient:
    """Create a generation client from a ``"provider/model"`` string."""
    provider, model = parse_provider_string(provider_string)
    return LangChainGenerationClient(create_chat_model(provider, model, **kwargs), provider)


def _init_chat_model_safe(provider: str, model: str, **kwargs: Any) -> BaseChatModel:
    """Call init_chat_model.

    Raises:
        ImportError: If provider package is not installed.
    """
    from langchain.chat_models import init_chat_model

    result: BaseChatModel = init_chat_model(model=model, model_provider=provider, **kwargs)
    return result


def _preprocess_provider_kwargs(
    provider: str,
    model: str,
    kwargs: dict[str, Any],
) -> dict[str, Any]:
    """Apply provider-specific pre-processing to kwargs.

    Handles:
    - OpenAI: OPENAI_API_KEY env var
    - Azure OpenAI: AZURE_OPENAI_ENDPOINT / AZURE_OPENAI_API_KEY env vars,
      model name used as the deployment
    - Ollama: OLLAMA_HOST env var mapped to base_url
    - Anthropic: ANTHROPIC_API_KEY env var

    Raises:
        ProviderError: If required configuration is missing.
    """
    kwargs = dict(kwargs)  # Don't mutate input

    if provider == "openai":
        api_key = kwargs.get("api_key") or os.getenv("OPENAI_API_KEY")
        if not api_key:
            log.error("provider_config_error", provider="openai", missing="OPENAI_API_KEY")
            raise ProviderError(
                "openai",
                "API key required. Set OPENAI_API_KEY environment variable.",
            )
        kwargs["api_key"] = api_key

    elif provider == "azure_openai":
        endpoint = kwargs.pop("endpoint", None) or os.getenv("AZURE_OPENAI_ENDPOINT")
        api_key = kwargs.get("api_key") or os.getenv("AZURE_OPENAI_API_KEY")
        missing = [
            name
            for name, value in (
                ("AZURE_OPENAI_ENDPOINT", endpoint),
                ("AZURE_OPENAI_API_KEY", api_key),
            )
            if not value
        ]
        if missing:
            log.error("provider_config_error", provider="azure_openai", missing=missing)
            raise ProviderError(
                "azure_openai",
                f"Azure OpenAI not configured. Set {', '.join(missing)}.",
            )
        kwargs["azure_endpoint"] = endpoint
        kwargs["api_key"] = api_key
        kwargs["azure_deployment"] = model
        kwargs.setdefault(
            "api_version", os.getenv("OPENAI_API_VERSION") or DEFAULT_AZURE_API_VERSION
        )

    elif provider == "ollama":
        host = kwargs.pop("host", None) or os.getenv("OLLAMA_HOST") or DEFAULT_OLLAMA_HOST
        kwargs["base_url"] = host

    elif provider == "anthropic":
        api_key = kwargs.get("api_key") or os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            log.error("provider_config_error", provider="anthropic", missing="ANTHROPIC_API_KEY")
            raise ProviderError(
                "anthropic",
                "API key required. Set ANTHROPIC_API_KEY environment variable.",
            )
        kwargs["api_key"] = api_key

    return kwargs


def _get_package_for_provider(provider: str) -> str:
    """Get the LangChain package name for a provider."""
    packages = {
        "openai": "langchain-openai",
        "azure_openai": "langchain-openai",
        "ollama": "langchain-ollama",
        "anthropic": "langchain-anthropic",
    }
    return packages.get(provider, f"langchain-{provider}")


def _normalize_provider(provider_name: str) -> str:
    name = provider_name.strip().lower()
    return _PROVIDER_ALIASES.get(name, name)
