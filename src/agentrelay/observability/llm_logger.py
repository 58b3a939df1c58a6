"""JSONL logger for generation calls.

Writes one structured entry per call to logs/llm_calls.jsonl.
Content is never truncated - full prompts and responses are preserved.

Only active when --log flag is passed to CLI.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path


@dataclass
class LLMLogEntry:
    """Entry for generation call logging."""

    timestamp: str
    stage: str
    run_id: str

    # Request
    messages: list[dict[str, str]]
    max_output_tokens: int
    streaming: bool

    # Response
    content: str
    duration_seconds: float

    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class LLMLogger:
    """Logger for generation calls in JSONL format.

    Attributes:
        log_path: Path to the JSONL log file.
        enabled: Whether logging is enabled.
    """

    def __init__(self, logs_dir: Path, enabled: bool = True) -> None:
        """Initialize the logger.

        Args:
            logs_dir: Directory holding llm_calls.jsonl.
            enabled: Whether to actually write logs.
        """
        self.enabled = enabled
        self.log_path = logs_dir / "llm_calls.jsonl"
        if enabled:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, entry: LLMLogEntry) -> None:
        """Append an entry to the JSONL log."""
        if not self.enabled:
            return

        with self.log_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(asdict(entry)) + "\n")

    @staticmethod
    def create_entry(
        stage: str,
        run_id: str,
        messages: list[dict[str, str]],
        content: str,
        duration_seconds: float,
        max_output_tokens: int,
        streaming: bool = False,
        error: str | None = None,
        **metadata: Any,
    ) -> LLMLogEntry:
        """Create a log entry with current timestamp."""
        return LLMLogEntry(
            timestamp=datetime.now(UTC).isoformat(),
            stage=stage,
            run_id=run_id,
            messages=messages,
            max_output_tokens=max_output_tokens,
            streaming=streaming,
            content=content,
            duration_seconds=duration_seconds,
            error=error,
            metadata=dict(metadata),
        )

    def read_entries(self) -> list[LLMLogEntry]:
        """Read all entries from the log file."""
        if not self.log_path.exists():
            return []

        entries = []
        with self.log_path.open(encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    entries.append(LLMLogEntry(**json.loads(line)))
        return entries
