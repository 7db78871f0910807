"""
Result shaping for webhook payloads.

``parse_answers`` flattens what the visitor produced so far into a
``{label: value}`` dict. ``parse_sample_result`` builds the same shape
with made-up values for every input that can be reached before a given
block, so a webhook can be tried while the flow is still being edited.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from models.schemas import (
    ChoiceInputStep, DateInputStep, InputStepType, ResultValues, StepBase, Typebot,
    is_input_step,
)

SAMPLE_MESSAGE = "This is a sample result, it has been generated ⬇️"

_SAMPLE_VALUES = {
    InputStepType.EMAIL.value: "test@email.com",
    InputStepType.NUMBER.value: "20",
    InputStepType.PHONE.value: "+33665566773",
    InputStepType.TEXT.value: "answer value",
    InputStepType.URL.value: "https://test.com",
}


def _sample_value(step: StepBase) -> str:
    if isinstance(step, ChoiceInputStep):
        if not step.items:
            return ""
        if step.options.is_multiple_choice:
            return ", ".join(item.content for item in step.items)
        return step.items[0].content
    if isinstance(step, DateInputStep):
        return datetime.now(timezone.utc).isoformat()
    return _SAMPLE_VALUES.get(step.type, "answer value")


def _previous_input_steps(typebot: Typebot, block_id: str) -> list[StepBase]:
    """Input steps of every block that can lead to ``block_id``, nearest first."""
    steps: list[StepBase] = []
    visited = {block_id}
    frontier = [block_id]
    while frontier:
        target = frontier.pop(0)
        for edge in typebot.edges:
            source_id = edge.from_.block_id
            if edge.to.block_id != target or not source_id or source_id in visited:
                continue
            visited.add(source_id)
            frontier.append(source_id)
            block = typebot.find_block(source_id)
            if block:
                steps.extend(s for s in block.steps if is_input_step(s))
    return steps


def _answer_label(typebot: Typebot, step: StepBase) -> str:
    variable_id = getattr(step.options, "variable_id", None)
    variable = typebot.find_variable(variable_id) if variable_id else None
    if variable:
        return variable.name
    block = typebot.find_block(step.block_id)
    return block.title if block and block.title else step.id


def parse_sample_result(typebot: Typebot, block_id: str) -> dict[str, Any]:
    """Sample payload for a webhook placed in ``block_id``."""
    result: dict[str, Any] = {
        "message": SAMPLE_MESSAGE,
        "Submitted at": datetime.now(timezone.utc).isoformat(),
    }
    for step in _previous_input_steps(typebot, block_id):
        result.setdefault(_answer_label(typebot, step), _sample_value(step))
    for variable in typebot.variables:
        result.setdefault(variable.name, "content")
    return result


def parse_answers(typebot: Typebot, result_values: ResultValues) -> dict[str, Any]:
    """Answers labelled by bound variable name or block title, then variable values."""
    result: dict[str, Any] = {"Submitted at": result_values.created_at.isoformat()}
    variable_names = {v.id: v.name for v in result_values.variables}
    for answer in result_values.answers:
        if answer.variable_id and answer.variable_id in variable_names:
            label = variable_names[answer.variable_id]
        else:
            block = typebot.find_block(answer.block_id)
            label = block.title if block and block.title else answer.step_id
        result[label] = answer.content
    for variable in result_values.variables:
        if variable.value is not None:
            result.setdefault(variable.name, variable.value)
    return result
