"""Graph builders and recorders shared by the test modules."""
from __future__ import annotations

from typing import Optional

from engine.conversation import Conversation
from models.schemas import (
    Block, ChoiceInputOptions, ChoiceInputStep, ChoiceItem, Edge, EdgeSource, EdgeTarget,
    InputOptions, LogEntry, StartStep, StepBase, TextBubbleContent, TextBubbleStep,
    TextInputStep, Typebot, Variable, is_bubble_step,
)
from services.variables import parse_variables


def text(step_id: str, content: str, edge: Optional[str] = None) -> TextBubbleStep:
    return TextBubbleStep(
        id=step_id,
        content=TextBubbleContent(html=f"<div>{content}</div>", plain_text=content),
        outgoing_edge_id=edge,
    )


def text_input(step_id: str, variable_id: Optional[str] = None, edge: Optional[str] = None) -> TextInputStep:
    return TextInputStep(id=step_id, options=InputOptions(variable_id=variable_id), outgoing_edge_id=edge)


def choice(step_id: str, items: list[tuple[str, Optional[str]]], edge: Optional[str] = None,
           multiple: bool = False) -> ChoiceInputStep:
    return ChoiceInputStep(
        id=step_id,
        options=ChoiceInputOptions(is_multiple_choice=multiple),
        items=[
            ChoiceItem(id=f"{step_id}-{n}", step_id=step_id, content=content, outgoing_edge_id=item_edge)
            for n, (content, item_edge) in enumerate(items)
        ],
        outgoing_edge_id=edge,
    )


def block(block_id: str, *steps: StepBase, title: str = "") -> Block:
    """Build a block, stamping each step with the block id."""
    return Block(
        id=block_id,
        title=title or block_id,
        steps=[s.model_copy(update={"block_id": block_id}) for s in steps],
    )


def start_block(edge_id: str, block_id: str = "start") -> Block:
    return block(block_id, StartStep(id=f"{block_id}-step", outgoing_edge_id=edge_id), title="Start")


def edge(edge_id: str, to_block: str, to_step: Optional[str] = None, from_block: str = "") -> Edge:
    return Edge(
        id=edge_id,
        from_=EdgeSource(block_id=from_block),
        to=EdgeTarget(block_id=to_block, step_id=to_step),
    )


def typebot(typebot_id: str, blocks: list[Block], edges: list[Edge] = (),
            variables: list[Variable] = ()) -> Typebot:
    return Typebot(id=typebot_id, name=typebot_id, blocks=list(blocks),
                   edges=list(edges), variables=list(variables))


def plain_texts(steps) -> list[str]:
    return [s.content.plain_text for s in steps]


async def settle_bubbles(conversation: Conversation) -> list[str]:
    """Settle every bubble until the conversation waits for an answer or ends."""
    shown = []
    while not conversation.is_completed:
        step = conversation.current_step
        if step is None or not is_bubble_step(step):
            break
        shown.append(parse_variables(conversation.variables, step.content.plain_text))
        await conversation.settle_step()
    return shown


class RecordingSink:
    """Log sink that keeps every entry it receives."""

    def __init__(self):
        self.entries: list[LogEntry] = []

    def __call__(self, entry: LogEntry):
        self.entries.append(entry)

    def with_status(self, status: str) -> list[LogEntry]:
        return [e for e in self.entries if e.status == status]
