"""
Step Executor — per-kind behaviour for the step that just became current.

  start        → immediately yields its outgoing edge
  bubble       → nothing to run; settled by the rendering surface
  input        → nothing to run; settled by an answer (see apply_answer)
  logic        → injected logic executor (variables, conditions, links)
  integration  → injected integration executor (webhooks, sheets, email)

Logic and integration executors are plain async callables supplied by the
host, so the engine never depends on what they do. Any exception they
raise is caught here, reported to the log sink and turned into "no next
edge" so the conversation falls through instead of stalling.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog

from engine.context import ExecutionContext, IntegrationContext
from engine.exceptions import InvalidStepEventError
from models.schemas import (
    Answer, LogEntry, StepBase, StepKind, Typebot, is_choice_input,
)

logger = structlog.get_logger()

LogicExecutor = Callable[[StepBase, ExecutionContext], Awaitable["StepOutcome"]]
IntegrationExecutorFn = Callable[[StepBase, IntegrationContext], Awaitable[Optional[str]]]


@dataclass(frozen=True)
class StepOutcome:
    """What a settled step asks the traversal to do next."""
    next_edge_id: Optional[str] = None
    linked_typebot: Optional[Typebot] = None


class StepExecutor:
    """
    Dispatches a current step to the behaviour of its kind.

    Dependencies are injected via the constructor so hosts and tests can
    swap the logic and integration collaborators.
    """

    def __init__(
        self,
        logic_executor: LogicExecutor = None,
        integration_executor: IntegrationExecutorFn = None,
    ):
        """
        Args:
            logic_executor:       async fn(step, ExecutionContext) → StepOutcome
            integration_executor: async fn(step, IntegrationContext) → edge id | None
        """
        if logic_executor is None:
            from services.logic import execute_logic
            logic_executor = execute_logic
        if integration_executor is None:
            from services.integration import IntegrationExecutor
            integration_executor = IntegrationExecutor()
        self._logic_executor = logic_executor
        self._integration_executor = integration_executor

    @staticmethod
    def runs_automatically(step: StepBase) -> bool:
        """True for steps that settle without any rendering-surface event."""
        return step.kind in (StepKind.START, StepKind.LOGIC, StepKind.INTEGRATION)

    async def run(self, step: StepBase, context: ExecutionContext) -> StepOutcome:
        """Run a start, logic or integration step and return its outcome."""
        kind = step.kind
        if kind == StepKind.START:
            return StepOutcome(next_edge_id=step.outgoing_edge_id)
        elif kind == StepKind.LOGIC:
            return await self._run_logic(step, context)
        elif kind == StepKind.INTEGRATION:
            return await self._run_integration(step, context)
        elif kind in (StepKind.BUBBLE, StepKind.INPUT):
            raise InvalidStepEventError(
                f"Step '{step.id}' ({step.type}) is settled by the rendering surface"
            )
        raise InvalidStepEventError(f"Unknown step kind: {kind}")

    # ── LOGIC ─────────────────────────────────────────

    async def _run_logic(self, step: StepBase, context: ExecutionContext) -> StepOutcome:
        try:
            outcome = await self._logic_executor(step, context)
        except Exception as e:
            return self._on_failure(step, context, e)
        if context.token.is_cancelled:
            logger.debug("logic_result_discarded", step_id=step.id)
            return StepOutcome()
        return outcome or StepOutcome()

    # ── INTEGRATION ───────────────────────────────────

    async def _run_integration(self, step: StepBase, context: ExecutionContext) -> StepOutcome:
        try:
            next_edge_id = await self._integration_executor(
                step, context.integration_context(step),
            )
        except Exception as e:
            return self._on_failure(step, context, e)
        if context.token.is_cancelled:
            logger.debug("integration_result_discarded", step_id=step.id)
            return StepOutcome()
        return StepOutcome(next_edge_id=next_edge_id)

    @staticmethod
    def _on_failure(step: StepBase, context: ExecutionContext, error: Exception) -> StepOutcome:
        logger.error("step_execution_error",
                     step_id=step.id, step_type=step.type, error=str(error))
        if not context.token.is_cancelled:
            context.on_new_log(LogEntry(
                status="error",
                description=f"{step.type} step failed",
                details=str(error),
            ))
        return StepOutcome()


def apply_answer(step: StepBase, content: Optional[str], context: ExecutionContext) -> Optional[str]:
    """
    Record an answer to an input step.

    Writes the bound variable, stores the answer in the result values and,
    for single-choice inputs, returns the outgoing edge of the item whose
    content matches.
    """
    variable_id = getattr(step.options, "variable_id", None)
    if variable_id and content:
        context.update_variable_value(variable_id, content)
    if content is not None:
        context.add_answer(Answer(
            step_id=step.id, block_id=step.block_id,
            content=content, variable_id=variable_id,
        ))

    if is_choice_input(step) and not step.options.is_multiple_choice:
        item = next((i for i in step.items if i.content == content), None)
        if item and item.outgoing_edge_id:
            return item.outgoing_edge_id
    return None
