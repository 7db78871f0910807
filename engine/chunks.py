"""
Chunk Renderer — groups visited steps into display bursts.

A chunk is a run of consecutive bubbles plus at most one trailing input.
The renderer is a pure fold over the visited-step sequence: it never
mutates the list it is given, so a retried input can always be rendered
in place by rebuilding from the full sequence.
"""
from __future__ import annotations

from typing import Iterable, Optional

from pydantic import BaseModel

from models.schemas import BubbleStep, InputStep, StepBase, is_bubble_step, is_input_step


class Chunk(BaseModel):
    """One visually grouped message burst."""
    bubbles: list[BubbleStep] = []
    input: Optional[InputStep] = None


def append_step(chunks: list[Chunk], step: StepBase) -> list[Chunk]:
    """Return a new chunk list with ``step`` appended."""
    if is_bubble_step(step):
        if chunks and chunks[-1].input is None:
            last = chunks[-1]
            return [*chunks[:-1], last.model_copy(update={"bubbles": [*last.bubbles, step]})]
        return [*chunks, Chunk(bubbles=[step])]

    if is_input_step(step):
        if not chunks or chunks[-1].input is not None:
            return [*chunks, Chunk(input=step)]
        return [*chunks[:-1], chunks[-1].model_copy(update={"input": step})]

    # Start, logic and integration steps leave no visible artifact
    return list(chunks)


def build_chunks(steps: Iterable[StepBase]) -> list[Chunk]:
    """Rebuild the chunk list from a full visited-step sequence."""
    chunks: list[Chunk] = []
    for step in steps:
        chunks = append_step(chunks, step)
    return chunks
