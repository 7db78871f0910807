"""
Conversation — the host that chains block traversals into a full chat.

A conversation owns one ExecutionContext and at most one live
BlockTraversalController. When a block ends, the host resolves where to
go next:

  1. A linked typebot came with the end signal → keep its working graph.
  2. No edge id → pop the link stack and resume the caller's edge
     (repeat while frames carry no edge); empty stack → completed.
  3. Edge id → edge → target block, starting at ``edge.to.step_id``
     when set; unknown edge or block → completed.

Block ends are processed in a loop rather than recursively, and a
runaway chain of blocks that never waits for the visitor is cut after
``max_chained_blocks`` transitions.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

import structlog

from config.settings import EngineConfig, get_settings
from engine.chunks import Chunk
from engine.context import ExecutionContext
from engine.controller import BlockTraversalController
from engine.exceptions import InvalidStepEventError
from engine.executor import StepExecutor
from models.schemas import (
    Block, LogEntry, StepBase, Typebot, Variable, is_input_step, is_start_step,
)
from services.inputs import step_can_be_retried, validate_answer
from services.variables import parse_variables

logger = structlog.get_logger()


class Conversation:
    """One visitor's run through a typebot and the typebots it links to."""

    def __init__(
        self,
        typebot: Typebot,
        context: ExecutionContext = None,
        *,
        registry=None,
        executor: StepExecutor = None,
        config: EngineConfig = None,
        on_chunks_change: Callable[[list[Chunk]], Any] = None,
        on_completed: Callable[[], Any] = None,
    ):
        """
        Args:
            typebot:          Host graph the conversation starts in.
            context:          Prebuilt execution context; built from ``typebot`` when omitted.
            registry:         TypebotRegistry used to fetch linked typebots.
            executor:         Step executor shared by every block traversal.
            config:           Engine settings (preview flag, API host, chain limit).
            on_chunks_change: fn(chunks) called with the whole conversation's chunks.
            on_completed:     fn() called once when no further block can be reached.
        """
        self.config = config or get_settings().engine
        self.context = context or ExecutionContext(
            typebot,
            typebot_lookup=registry.fetch if registry else None,
            config=self.config,
        )
        self._executor = executor or StepExecutor()
        self._on_chunks_change = on_chunks_change
        self._on_completed = on_completed

        self._controllers: list[BlockTraversalController] = []
        self._pending_end: Optional[tuple[Optional[str], Optional[Typebot]]] = None
        self._started = False
        self._completed = False

    # ── Read-only views ───────────────────────────────

    @property
    def active_block(self) -> Optional[Block]:
        controller = self._active_controller
        return controller.block if controller and not self._completed else None

    @property
    def current_step(self) -> Optional[StepBase]:
        controller = self._active_controller
        return controller.current_step if controller and not self._completed else None

    @property
    def chunks(self) -> list[Chunk]:
        return [chunk for controller in self._controllers for chunk in controller.chunks]

    @property
    def history(self) -> list[str]:
        """Ids of the blocks visited so far, in order."""
        return [controller.block.id for controller in self._controllers]

    @property
    def current_typebot_id(self) -> str:
        return self.context.current_typebot_id

    @property
    def variables(self) -> list[Variable]:
        return self.context.variables

    @property
    def is_completed(self) -> bool:
        return self._completed

    @property
    def is_cancelled(self) -> bool:
        return self.context.token.is_cancelled

    @property
    def host_avatar_url(self) -> Optional[str]:
        avatar = self.context.typebot.theme.chat.host_avatar
        if not avatar or not avatar.is_enabled or not avatar.url:
            return None
        return parse_variables(self.variables, avatar.url)

    @property
    def _active_controller(self) -> Optional[BlockTraversalController]:
        return self._controllers[-1] if self._controllers else None

    # ── Surface-facing API ────────────────────────────

    async def start(self):
        if self._started:
            raise InvalidStepEventError("Conversation already started")
        self._started = True

        typebot = self.context.typebot
        logger.info("conversation_started", typebot_id=typebot.id, name=typebot.name,
                    is_preview=self.context.is_preview)
        block = typebot.start_block()
        if block is None:
            logger.warning("start_block_not_found", typebot_id=typebot.id)
            self._complete()
            return
        start_index = next(i for i, s in enumerate(block.steps) if is_start_step(s))
        await self._start_block(block, start_index)
        await self._process_block_ends()

    async def settle_step(self):
        """The surface finished displaying the live bubble."""
        await self._require_controller().settle_step()
        await self._process_block_ends()

    async def submit_answer(self, content: Optional[str], is_retry: bool = False):
        await self._require_controller().submit_answer(content, is_retry=is_retry)
        await self._process_block_ends()

    async def answer(self, content: str) -> bool:
        """
        Validate ``content`` against the live input and submit it.

        Invalid answers to inputs carrying a retry message produce a retry
        bubble; other invalid answers are rejected without any transition.
        Returns True when the answer was accepted.
        """
        step = self.current_step
        if step is None or not is_input_step(step):
            raise InvalidStepEventError("No input step is waiting for an answer")
        if validate_answer(step, content):
            await self.submit_answer(content)
            return True
        if step_can_be_retried(step):
            await self.submit_answer(content, is_retry=True)
        else:
            logger.debug("answer_rejected", step_id=step.id, step_type=step.type)
        return False

    def close(self):
        """Tear the conversation down; late results and events are discarded."""
        self.context.token.cancel()
        if self._active_controller:
            self._active_controller.cancel()
        logger.info("conversation_closed", typebot_id=self.context.typebot.id,
                    blocks_visited=len(self._controllers))

    # ── Block chaining ────────────────────────────────

    def _require_controller(self) -> BlockTraversalController:
        controller = self._active_controller
        if controller is None:
            raise InvalidStepEventError("Conversation has not started")
        return controller

    def _on_block_end(self, edge_id: Optional[str], linked_typebot: Optional[Typebot]):
        self._pending_end = (edge_id, linked_typebot)

    def _notify_chunks(self, _block_chunks: list[Chunk]):
        if self._on_chunks_change:
            self._on_chunks_change(self.chunks)

    async def _start_block(self, block: Block, start_index: int):
        controller = BlockTraversalController(
            block,
            start_index,
            self.context,
            on_block_end=self._on_block_end,
            executor=self._executor,
            on_chunks_change=self._notify_chunks,
        )
        self._controllers.append(controller)
        await controller.start()

    async def _process_block_ends(self):
        chained = 0
        while self._pending_end is not None and not self.is_cancelled:
            edge_id, linked_typebot = self._pending_end
            self._pending_end = None

            chained += 1
            if chained > self.config.max_chained_blocks:
                logger.error("max_chained_blocks_exceeded",
                             limit=self.config.max_chained_blocks, edge_id=edge_id)
                self.context.on_new_log(LogEntry(
                    status="error",
                    description="Too many consecutive blocks without visitor interaction",
                    details={"limit": self.config.max_chained_blocks},
                ))
                self._complete()
                return

            target = self._resolve(edge_id, linked_typebot)
            if target is None:
                self._complete()
                return
            block, start_index = target
            await self._start_block(block, start_index)

    def _resolve(
        self, edge_id: Optional[str], linked_typebot: Optional[Typebot],
    ) -> Optional[tuple[Block, int]]:
        context = self.context
        if linked_typebot is not None and linked_typebot.id != context.typebot.id:
            context.inject_linked_typebot(linked_typebot)

        while not edge_id:
            frame = context.link_stack.pop()
            if frame is None:
                return None
            context.set_current_typebot_id(frame.typebot_id)
            logger.info("linked_typebot_resumed", typebot_id=frame.typebot_id, edge_id=frame.edge_id)
            edge_id = frame.edge_id

        graph = context.current_typebot
        edge = graph.find_edge(edge_id)
        if edge is None:
            logger.warning("unknown_edge", edge_id=edge_id, typebot_id=graph.id)
            return None
        block = graph.find_block(edge.to.block_id)
        if block is None:
            logger.warning("unknown_block", edge_id=edge_id, block_id=edge.to.block_id,
                           typebot_id=graph.id)
            return None

        start_index = 0
        if edge.to.step_id:
            start_index = next(
                (i for i, s in enumerate(block.steps) if s.id == edge.to.step_id), 0,
            )
        return block, start_index

    def _complete(self):
        if self._completed:
            return
        self._completed = True
        logger.info("conversation_completed", typebot_id=self.context.typebot.id,
                    blocks_visited=len(self._controllers))
        if self._on_completed:
            self._on_completed()
