"""
Input answer validation and retry-step synthesis.

Email, URL and phone inputs carry a retry message. When a visitor submits
something that does not validate, the input is not settled; instead a
text bubble holding the retry message is shown, and that bubble carries a
freshly created edge pointing back at the input step so the prompt is
rendered again right after it.
"""
from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import Callable

from models.schemas import (
    DateInputStep, Edge, EdgeSource, EdgeTarget, EmailInputStep, NumberInputStep,
    PhoneNumberInputStep, RetryableInputOptions, StepBase, TextBubbleContent,
    TextBubbleStep, UrlInputStep, Variable, is_input_step,
)
from services.variables import parse_variables

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
URL_PATTERN = re.compile(r"^(https?://)?([\w-]+\.)+[\w-]{2,}(:\d+)?(/\S*)?$", re.IGNORECASE)
PHONE_PATTERN = re.compile(r"^\+?\d[\d\s().-]{6,}\d$")


def _is_number(content: str, step: NumberInputStep) -> bool:
    try:
        value = float(content.strip())
    except ValueError:
        return False
    if step.options.min is not None and value < step.options.min:
        return False
    if step.options.max is not None and value > step.options.max:
        return False
    return True


def _is_date(content: str) -> bool:
    parts = [p.strip() for p in content.split(" to ")]
    try:
        for part in parts:
            datetime.fromisoformat(part)
    except ValueError:
        return False
    return True


def validate_answer(step: StepBase, content: str) -> bool:
    """Return False when ``content`` is not an acceptable answer for ``step``."""
    if not is_input_step(step):
        return True
    content = content or ""
    if isinstance(step, EmailInputStep):
        return bool(EMAIL_PATTERN.match(content.strip()))
    if isinstance(step, UrlInputStep):
        return bool(URL_PATTERN.match(content.strip()))
    if isinstance(step, PhoneNumberInputStep):
        return bool(PHONE_PATTERN.match(content.strip()))
    if isinstance(step, NumberInputStep):
        return _is_number(content, step)
    if isinstance(step, DateInputStep):
        return _is_date(content)
    return bool(content.strip())


def step_can_be_retried(step: StepBase) -> bool:
    return is_input_step(step) and isinstance(getattr(step, "options", None), RetryableInputOptions)


def parse_retry_step(
    step: StepBase,
    variables: list[Variable],
    create_edge: Callable[[Edge], str],
) -> TextBubbleStep:
    """
    Build the retry bubble for ``step``.

    The bubble lives in the input's block and its outgoing edge loops back to
    the input step, so following it re-renders the same prompt.
    """
    content = parse_variables(variables, step.options.retry_message_content)
    retry_step_id = f"{step.id}-retry-{uuid.uuid4().hex[:8]}"
    edge = Edge(
        from_=EdgeSource(block_id=step.block_id, step_id=retry_step_id),
        to=EdgeTarget(block_id=step.block_id, step_id=step.id),
    )
    edge_id = create_edge(edge)
    return TextBubbleStep(
        id=retry_step_id,
        block_id=step.block_id,
        content=TextBubbleContent(html=f"<div>{content}</div>", plain_text=content),
        outgoing_edge_id=edge_id,
        retry_of=step.id,
    )
