"""
Flow chat engine.

Walks a visual flow graph one block at a time, turning the steps it
visits into chunks for a rendering surface and pausing wherever the
visitor has to read or answer:

  - Chunk Renderer       groups visited bubbles and inputs into bursts
  - Step Executor        runs start, logic and integration steps
  - Block Traversal      reducer + controller for one block instance
  - Link Stack           resumption frames for Typebot-link steps
  - Conversation         chains blocks, follows edges, handles links
"""
from engine.chunks import Chunk, append_step, build_chunks
from engine.context import CancellationToken, ExecutionContext, IntegrationContext, VariableStore
from engine.controller import (
    AnswerSubmitted, BlockState, BlockTraversalController, RetryRequested,
    StepBecameCurrent, StepSettled, reduce,
)
from engine.conversation import Conversation
from engine.exceptions import BlockAlreadyEndedError, FlowEngineError, InvalidStepEventError
from engine.executor import StepExecutor, StepOutcome, apply_answer
from engine.link_stack import LinkedTypebotStack, LinkFrame
