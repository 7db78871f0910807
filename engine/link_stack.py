"""
Cross-Typebot Link Stack.

When a Typebot-link step injects another graph, the edge that would have
been followed in the caller is pushed here together with the caller's
typebot id. When the linked graph runs out of edges, the most recent frame
is popped and the caller resumes from it. Innermost links resume first.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class LinkFrame:
    edge_id: Optional[str]          # caller edge to resume; None when the link step had none
    typebot_id: str                 # typebot that was active when the link happened


class LinkedTypebotStack:
    """LIFO stack of resumption frames, scoped to one conversation."""

    def __init__(self):
        self._frames: list[LinkFrame] = []

    def push(self, edge_id: Optional[str], typebot_id: str) -> LinkFrame:
        frame = LinkFrame(edge_id=edge_id, typebot_id=typebot_id)
        self._frames.append(frame)
        logger.debug("link_frame_pushed",
                     edge_id=edge_id, typebot_id=typebot_id, depth=len(self._frames))
        return frame

    def pop(self) -> Optional[LinkFrame]:
        if not self._frames:
            return None
        frame = self._frames.pop()
        logger.debug("link_frame_popped",
                     edge_id=frame.edge_id, typebot_id=frame.typebot_id,
                     depth=len(self._frames))
        return frame

    def peek(self) -> Optional[LinkFrame]:
        return self._frames[-1] if self._frames else None

    @property
    def frames(self) -> list[LinkFrame]:
        return list(self._frames)

    def __len__(self) -> int:
        return len(self._frames)

    def __bool__(self) -> bool:
        return bool(self._frames)
