"""
Default Logic executor.

Runs the four logic step types against the execution context:

  Set variable   evaluate the expression and write the target variable
  Condition      route to the true or false edge
  Redirect       hand the parsed URL to the host's redirect callback
  Typebot link   switch into another graph (or another block of this one)
"""
from __future__ import annotations

from typing import Optional

import structlog

from engine.context import ExecutionContext
from engine.executor import StepOutcome
from models.schemas import (
    Comparison, ConditionOptions, ConditionStep, Edge, EdgeSource, EdgeTarget,
    LogEntry, LogicStepType, RedirectStep, SetVariableStep, StepBase, Typebot,
    TypebotLinkStep,
)
from services.variables import evaluate_expression, parse_variables
from utils.conditions import evaluate_conditions

logger = structlog.get_logger()

CURRENT_TYPEBOT = "current"


async def execute_logic(step: StepBase, context: ExecutionContext) -> StepOutcome:
    """Run a logic step and return where the traversal should go next."""
    handler = _HANDLERS.get(step.type)
    if handler is None:
        logger.warning("unsupported_logic_step", step_id=step.id, step_type=step.type)
        return StepOutcome(next_edge_id=step.outgoing_edge_id)
    return await handler(step, context)


# ── SET VARIABLE ──────────────────────────────────────

async def _set_variable(step: SetVariableStep, context: ExecutionContext) -> StepOutcome:
    variable_id = step.options.variable_id
    if not variable_id:
        return StepOutcome(next_edge_id=step.outgoing_edge_id)
    value = evaluate_expression(context.variables, step.options.expression_to_evaluate)
    context.update_variable_value(variable_id, value)
    return StepOutcome(next_edge_id=step.outgoing_edge_id)


# ── CONDITION ─────────────────────────────────────────

async def _condition(step: ConditionStep, context: ExecutionContext) -> StepOutcome:
    variables = context.variables
    # Comparison values may reference other variables
    options = ConditionOptions(
        logical_operator=step.options.logical_operator,
        comparisons=[
            Comparison(
                id=c.id,
                variable_id=c.variable_id,
                comparison_operator=c.comparison_operator,
                value=parse_variables(variables, c.value) if c.value is not None else None,
            )
            for c in step.options.comparisons
        ],
    )
    passed = evaluate_conditions(options, variables)
    logger.debug("condition_evaluated", step_id=step.id, passed=passed)
    return StepOutcome(next_edge_id=step.true_edge_id if passed else step.false_edge_id)


# ── REDIRECT ──────────────────────────────────────────

def sanitize_url(url: str) -> str:
    return url if url.startswith("http") else f"https://{url}"


async def _redirect(step: RedirectStep, context: ExecutionContext) -> StepOutcome:
    if step.options.url:
        url = sanitize_url(parse_variables(context.variables, step.options.url))
        logger.info("redirect_requested", step_id=step.id, url=url)
        context.redirect(url, step.options.is_new_tab)
    return StepOutcome(next_edge_id=step.outgoing_edge_id)


# ── TYPEBOT LINK ──────────────────────────────────────

async def _find_linked_typebot(typebot_id: str, context: ExecutionContext) -> Optional[Typebot]:
    if typebot_id == CURRENT_TYPEBOT:
        return context.current_typebot
    known = context.find_typebot(typebot_id)
    if known is not None:
        return known
    return await context.fetch_typebot(typebot_id)


def _link_failed(step: TypebotLinkStep, context: ExecutionContext, description: str) -> StepOutcome:
    logger.warning("typebot_link_failed", step_id=step.id,
                   typebot_id=step.options.typebot_id, reason=description)
    context.on_new_log(LogEntry(
        status="error",
        description=description,
        details={"typebot_id": step.options.typebot_id, "block_id": step.options.block_id},
    ))
    return StepOutcome(next_edge_id=step.outgoing_edge_id)


async def _typebot_link(step: TypebotLinkStep, context: ExecutionContext) -> StepOutcome:
    typebot_id = step.options.typebot_id
    if not typebot_id:
        return StepOutcome(next_edge_id=step.outgoing_edge_id)

    linked = await _find_linked_typebot(typebot_id, context)
    if linked is None:
        return _link_failed(step, context, "Failed to link typebot")

    if step.options.block_id:
        entry_block = linked.find_block(step.options.block_id)
    else:
        entry_block = linked.start_block()
    if entry_block is None:
        return _link_failed(step, context, "Linked block not found")

    # The entry edge belongs to the linked graph.
    linked = context.inject_linked_typebot(linked)
    caller_typebot_id = context.current_typebot_id
    context.set_current_typebot_id(linked.id)
    edge_id = context.create_edge(Edge(
        from_=EdgeSource(block_id=step.block_id, step_id=step.id),
        to=EdgeTarget(block_id=entry_block.id),
    ))
    context.push_edge_id_in_linked_typebot_stack(step.outgoing_edge_id, caller_typebot_id)

    logger.info("typebot_linked", step_id=step.id, from_typebot=caller_typebot_id,
                to_typebot=linked.id, entry_block=entry_block.id)
    return StepOutcome(next_edge_id=edge_id, linked_typebot=linked)


_HANDLERS = {
    LogicStepType.SET_VARIABLE.value: _set_variable,
    LogicStepType.CONDITION.value: _condition,
    LogicStepType.REDIRECT.value: _redirect,
    LogicStepType.TYPEBOT_LINK.value: _typebot_link,
}
