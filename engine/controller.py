"""
Block Traversal Controller — drives one block instance from its start
offset to its single end signal.

The bookkeeping is an explicit reducer, ``reduce(state, event) -> state``,
over four events:

  StepBecameCurrent  a step is now live (appended to the visited sequence)
  StepSettled        a bubble finished displaying, or a start/logic/
                     integration step resolved with an optional edge
  AnswerSubmitted    the visitor answered the live input
  RetryRequested     the answer was rejected; a retry bubble goes live

The controller wraps the reducer with the side effects: it runs
automatic steps through the Step Executor, writes answers into the
variable store, synthesizes retry bubbles and calls ``on_block_end``
exactly once.

Advancing rule once a step settles without branching:
  current step has its own outgoing edge → end the block with it
  current step is the last of the block  → end the block with no edge
  otherwise                              → next step becomes current
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

import structlog

from engine.chunks import Chunk, append_step, build_chunks
from engine.context import ExecutionContext
from engine.exceptions import BlockAlreadyEndedError, InvalidStepEventError
from engine.executor import StepExecutor, apply_answer
from models.schemas import Block, StepBase, StepKind, Typebot
from services.inputs import parse_retry_step, step_can_be_retried

logger = structlog.get_logger()

BlockEndCallback = Callable[[Optional[str], Optional[Typebot]], Any]


# ──────────────────────────────────────────────────────────────
#  State & events
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BlockState:
    steps: tuple[StepBase, ...]
    start_index: int = 0
    cursor: int = -1                              # index in ``steps`` of the live step
    visited: tuple[StepBase, ...] = ()
    chunks: tuple[Chunk, ...] = ()
    ended: bool = False
    end_edge_id: Optional[str] = None
    linked_typebot: Optional[Typebot] = None

    @property
    def current_step(self) -> Optional[StepBase]:
        return self.visited[-1] if self.visited else None


@dataclass(frozen=True)
class StepBecameCurrent:
    step: StepBase
    index: int


@dataclass(frozen=True)
class StepSettled:
    next_edge_id: Optional[str] = None
    linked_typebot: Optional[Typebot] = None


@dataclass(frozen=True)
class AnswerSubmitted:
    content: Optional[str] = None
    choice_edge_id: Optional[str] = None          # edge of the matching single-choice item


@dataclass(frozen=True)
class RetryRequested:
    retry_step: StepBase


def initial_state(steps: list[StepBase], start_index: int = 0) -> BlockState:
    return BlockState(steps=tuple(steps), start_index=start_index)


# ──────────────────────────────────────────────────────────────
#  Reducer
# ──────────────────────────────────────────────────────────────

def _push(state: BlockState, step: StepBase, index: int) -> BlockState:
    return replace(
        state,
        cursor=index,
        visited=(*state.visited, step),
        chunks=tuple(append_step(list(state.chunks), step)),
    )


def _end(state: BlockState, edge_id: Optional[str], linked: Optional[Typebot] = None) -> BlockState:
    return replace(state, ended=True, end_edge_id=edge_id, linked_typebot=linked)


def _advance(state: BlockState) -> BlockState:
    current = state.current_step
    if current.outgoing_edge_id:
        return _end(state, current.outgoing_edge_id)
    next_index = state.cursor + 1
    if next_index >= len(state.steps):
        return _end(state, None)
    return _push(state, state.steps[next_index], next_index)


def reduce(state: BlockState, event: Any) -> BlockState:
    """Pure transition function of a block instance."""
    if state.ended:
        raise BlockAlreadyEndedError("Block traversal has already ended")

    if isinstance(event, StepBecameCurrent):
        return _push(state, event.step, event.index)

    current = state.current_step
    if current is None:
        raise InvalidStepEventError("No step is live yet")

    if isinstance(event, StepSettled):
        if current.kind == StepKind.START:
            return _end(state, current.outgoing_edge_id)
        if current.kind == StepKind.INPUT:
            raise InvalidStepEventError(f"Input step '{current.id}' settles with an answer")
        if event.linked_typebot is not None or event.next_edge_id:
            return _end(state, event.next_edge_id, event.linked_typebot)
        return _advance(state)

    if isinstance(event, AnswerSubmitted):
        if current.kind != StepKind.INPUT:
            raise InvalidStepEventError(f"Step '{current.id}' does not take an answer")
        if event.choice_edge_id:
            return _end(state, event.choice_edge_id)
        return _advance(state)

    if isinstance(event, RetryRequested):
        if current.kind != StepKind.INPUT:
            raise InvalidStepEventError(f"Step '{current.id}' cannot be retried")
        visited = (*state.visited, event.retry_step)
        return replace(state, visited=visited, chunks=tuple(build_chunks(visited)))

    raise InvalidStepEventError(f"Unknown event: {event!r}")


# ──────────────────────────────────────────────────────────────
#  Controller
# ──────────────────────────────────────────────────────────────

class BlockTraversalController:
    """Runs one block instance against a conversation's execution context."""

    def __init__(
        self,
        block: Block,
        start_index: int,
        context: ExecutionContext,
        on_block_end: BlockEndCallback,
        executor: StepExecutor = None,
        on_chunks_change: Callable[[list[Chunk]], Any] = None,
    ):
        self.block = block
        self._context = context
        self._on_block_end = on_block_end
        self._executor = executor or StepExecutor()
        self._on_chunks_change = on_chunks_change
        self._state = initial_state(block.steps, start_index)
        self._started = False
        self._cancelled = False

    # ── Read-only views ───────────────────────────────

    @property
    def state(self) -> BlockState:
        return self._state

    @property
    def chunks(self) -> list[Chunk]:
        return list(self._state.chunks)

    @property
    def current_step(self) -> Optional[StepBase]:
        return self._state.current_step

    @property
    def visited_steps(self) -> list[StepBase]:
        return list(self._state.visited)

    @property
    def is_ended(self) -> bool:
        return self._state.ended

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled or self._context.token.is_cancelled

    # ── Surface-facing events ─────────────────────────

    async def start(self):
        if self._started:
            raise InvalidStepEventError(f"Block '{self.block.id}' already started")
        self._started = True
        start_index = self._state.start_index
        logger.info("block_started", block_id=self.block.id,
                    title=self.block.title, start_index=start_index)

        if not 0 <= start_index < len(self._state.steps):
            self._finish(replace(self._state, ended=True))
            return
        self._dispatch(StepBecameCurrent(self._state.steps[start_index], start_index))
        await self._drive()

    async def settle_step(self):
        """The rendering surface finished displaying the live bubble."""
        if not self._accepts_events():
            return
        current = self.current_step
        if current is None or current.kind != StepKind.BUBBLE:
            raise InvalidStepEventError("Only a live bubble can be settled by the surface")
        self._dispatch(StepSettled())
        await self._drive()

    async def submit_answer(self, content: Optional[str], is_retry: bool = False):
        """The visitor answered the live input (or the surface rejected the answer)."""
        if not self._accepts_events():
            return
        current = self.current_step
        if current is None or current.kind != StepKind.INPUT:
            raise InvalidStepEventError("No input step is waiting for an answer")

        if is_retry and step_can_be_retried(current):
            retry_step = parse_retry_step(
                current, self._context.variables, self._context.create_edge,
            )
            logger.debug("input_retry", step_id=current.id, retry_step_id=retry_step.id)
            self._dispatch(RetryRequested(retry_step))
            return

        choice_edge_id = apply_answer(current, content, self._context)
        self._dispatch(AnswerSubmitted(content=content, choice_edge_id=choice_edge_id))
        await self._drive()

    def cancel(self):
        self._cancelled = True

    # ── Internals ─────────────────────────────────────

    def _accepts_events(self) -> bool:
        if self.is_cancelled:
            logger.debug("event_ignored_after_cancel", block_id=self.block.id)
            return False
        if self._state.ended:
            raise BlockAlreadyEndedError(f"Block '{self.block.id}' has already ended")
        return True

    async def _drive(self):
        """Settle start, logic and integration steps until the surface is needed."""
        while not self._state.ended and not self.is_cancelled:
            step = self.current_step
            if step is None or not StepExecutor.runs_automatically(step):
                return
            logger.debug("step_running", block_id=self.block.id,
                         step_id=step.id, step_type=step.type)
            outcome = await self._executor.run(step, self._context)
            if self.is_cancelled:
                logger.debug("step_outcome_discarded", step_id=step.id)
                return
            self._dispatch(StepSettled(outcome.next_edge_id, outcome.linked_typebot))

    def _dispatch(self, event: Any):
        self._finish(reduce(self._state, event))

    def _finish(self, new_state: BlockState):
        previous = self._state
        self._state = new_state
        if self._on_chunks_change and new_state.chunks != previous.chunks:
            self._on_chunks_change(list(new_state.chunks))
        if new_state.ended and not previous.ended:
            logger.info("block_ended", block_id=self.block.id,
                        edge_id=new_state.end_edge_id,
                        linked_typebot=new_state.linked_typebot.id if new_state.linked_typebot else None,
                        steps_visited=len(new_state.visited))
            self._on_block_end(new_state.end_edge_id, new_state.linked_typebot)
