"""Stage definition model.

A stage is pure data: every stage behaves the same at runtime (send
instructions plus context, receive text), so only the name, order and
instruction text distinguish one from another.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class StageDefinition(BaseModel):
    """Immutable description of one pipeline step.

    Attributes:
        name: Unique stage name. Compared case-insensitively.
        description: Human-readable summary of the stage's role.
        order: Ordinal position, used only for sorting.
        instructions: System instructions sent to the generation client.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    description: str = ""
    order: int = 0
    instructions: str = ""

    def same_name(self, name: str) -> bool:
        """Check whether this stage is called ``name`` (case-insensitive)."""
        return self.name.casefold() == name.casefold()
