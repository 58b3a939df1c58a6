"""Default three-stage content generation pipeline."""

from __future__ import annotations

from agentrelay.models.stage import StageDefinition
from agentrelay.pipeline.definition import SequentialPipeline

ANALYST = StageDefinition(
    name="Analyst",
    description="Market research & analysis",
    order=1,
    instructions=(
        "You are a senior market analyst. Analyze the product or service you are given: "
        "identify the target audience, key value propositions, competitive landscape "
        "and the tone the messaging should take. Respond with a structured analysis "
        "using clear headings."
    ),
)

WRITER = StageDefinition(
    name="Writer",
    description="Content creation & copywriting",
    order=2,
    instructions=(
        "You are an experienced marketing copywriter. You will receive the original "
        "product description and a market analysis. Write headlines, taglines, and "
        "short, medium and long product descriptions aligned with the analysis."
    ),
)

EDITOR = StageDefinition(
    name="Editor",
    description="Review & final polish",
    order=3,
    instructions=(
        "You are a meticulous editor. You will receive the original request and draft "
        "marketing copy. Correct grammar and style, tighten wording, keep the voice "
        "consistent, and return the final publication-ready copy."
    ),
)


def create_content_pipeline() -> SequentialPipeline:
    """Build the Analyst → Writer → Editor pipeline."""
    return SequentialPipeline().add_stage(ANALYST).add_stage(WRITER).add_stage(EDITOR)
