"""Ordered stage sequence for a sequential pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

from agentrelay.pipeline.errors import StageIndexError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from agentrelay.models.stage import StageDefinition


class SequentialPipeline:
    """Stages kept sorted by ``order``.

    Sorting is stable, so stages sharing an order keep their insertion order.
    Duplicate names are allowed, but lookups by name return the first match.
    Once handed to an orchestrator the pipeline should be treated as
    read-only.
    """

    def __init__(self) -> None:
        self._stages: list[StageDefinition] = []

    @classmethod
    def from_stages(cls, stages: Iterable[StageDefinition]) -> SequentialPipeline:
        pipeline = cls()
        for stage in stages:
            pipeline.add_stage(stage)
        return pipeline

    @property
    def stages(self) -> tuple[StageDefinition, ...]:
        """Stages in execution order."""
        return tuple(self._stages)

    @property
    def step_count(self) -> int:
        return len(self._stages)

    def add_stage(self, stage: StageDefinition) -> SequentialPipeline:
        """Append a stage and re-sort by order.

        Returns:
            This pipeline, for chaining.
        """
        self._stages.append(stage)
        self._stages.sort(key=lambda s: s.order)
        return self

    def clear(self) -> None:
        self._stages.clear()

    def stage_at(self, index: int) -> StageDefinition:
        """Get the stage at ``index``.

        Raises:
            StageIndexError: If index is outside ``[0, step_count)``.
        """
        if not 0 <= index < len(self._stages):
            raise StageIndexError(index, len(self._stages))
        return self._stages[index]

    def index_of(self, name: str) -> int:
        """Index of the first stage called ``name`` (case-insensitive), or -1."""
        for i, stage in enumerate(self._stages):
            if stage.same_name(name):
                return i
        return -1

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self) -> Iterator[StageDefinition]:
        return iter(tuple(self._stages))
