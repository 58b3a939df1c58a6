"""Observability module for agentrelay.

Provides structured logging and generation call tracking.
"""

from agentrelay.observability.llm_logger import LLMLogEntry, LLMLogger
from agentrelay.observability.logging import (
    close_file_logging,
    configure_logging,
    get_logger,
)

__all__ = [
    "LLMLogEntry",
    "LLMLogger",
    "close_file_logging",
    "configure_logging",
    "get_logger",
]
