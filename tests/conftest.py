"""Pytest configuration and shared fixtures."""

import os

import pytest


@pytest.fixture(autouse=True, scope="session")
def disable_langsmith_tracing() -> None:
    """Disable LangSmith tracing during test runs.

    Set LANGSMITH_TEST_TRACING=true to override for debugging.
    """
    if os.environ.get("LANGSMITH_TEST_TRACING", "").lower() != "true":
        os.environ["LANGSMITH_TRACING"] = "false"


@pytest.fixture(autouse=True)
def clear_provider_override(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's AGENTRELAY_PROVIDER from leaking into tests."""
    monkeypatch.delenv("AGENTRELAY_PROVIDER", raising=False)
