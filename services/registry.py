"""
Typebot Registry — loads, validates and serves flow graphs.

This is the graph lookup the engine uses to resolve Typebot-link steps
whose target is not already part of the conversation. Graphs are
validated on registration so structural errors surface before any
conversation starts, never in the middle of one.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import structlog
import yaml

from models.schemas import Typebot, is_choice_input, is_start_step

logger = structlog.get_logger()


class TypebotRegistry:
    """In-memory registry of typebots indexed by id."""

    def __init__(self):
        self._typebots: dict[str, Typebot] = {}

    # ── Registration ──────────────────────────────────

    def register(self, typebot: Typebot):
        """Register a single typebot. Raises ValueError listing every problem."""
        errors = self._validate(typebot)
        if errors:
            logger.error("invalid_typebot", typebot_id=typebot.id, errors=errors)
            raise ValueError(f"Invalid typebot '{typebot.id}': {'; '.join(errors)}")

        self._typebots[typebot.id] = typebot
        logger.info("typebot_registered",
                    typebot_id=typebot.id,
                    name=typebot.name,
                    blocks=len(typebot.blocks),
                    edges=len(typebot.edges))

    def register_from_config(self, config: list[dict[str, Any]]) -> list[Typebot]:
        """Load typebots from raw dicts (YAML or JSON documents)."""
        typebots = [self.parse_typebot(raw) for raw in config]
        for typebot in typebots:
            self.register(typebot)
        logger.info("typebots_loaded", count=len(typebots))
        return typebots

    def load_file(self, path: str) -> list[Typebot]:
        """Load a YAML or JSON file holding one typebot or a list of them."""
        text = Path(path).read_text()
        if path.endswith(".json"):
            raw = json.loads(text)
        else:
            raw = yaml.safe_load(text)
        if isinstance(raw, dict):
            raw = raw.get("typebots", [raw])
        return self.register_from_config(raw or [])

    # ── Lookup ────────────────────────────────────────

    def get(self, typebot_id: str) -> Optional[Typebot]:
        return self._typebots.get(typebot_id)

    async def fetch(self, typebot_id: str) -> Optional[Typebot]:
        """Engine-facing lookup; returns a private copy, or None when unknown."""
        typebot = self._typebots.get(typebot_id)
        if typebot is None:
            logger.warning("typebot_not_found", typebot_id=typebot_id)
            return None
        return typebot.model_copy(deep=True)

    def list_all(self) -> list[Typebot]:
        return list(self._typebots.values())

    # ── Validation ────────────────────────────────────

    @staticmethod
    def _validate(typebot: Typebot) -> list[str]:
        errors = []
        if not typebot.id:
            errors.append("typebot id is required")

        block_ids: set[str] = set()
        steps_by_block: dict[str, set[str]] = {}
        step_ids: set[str] = set()
        for block in typebot.blocks:
            if block.id in block_ids:
                errors.append(f"duplicate block id '{block.id}'")
            block_ids.add(block.id)
            steps_by_block.setdefault(block.id, set())
            for step in block.steps:
                if step.id in step_ids:
                    errors.append(f"duplicate step id '{step.id}'")
                step_ids.add(step.id)
                steps_by_block[block.id].add(step.id)
                if step.block_id != block.id:
                    errors.append(
                        f"step '{step.id}' declares block '{step.block_id}' but sits in '{block.id}'"
                    )

        start_steps = [s for s in typebot.all_steps() if is_start_step(s)]
        if not start_steps:
            errors.append("typebot has no start step")
        elif len(start_steps) > 1:
            errors.append("typebot has more than one start step")

        edge_ids: set[str] = set()
        for edge in typebot.edges:
            if edge.id in edge_ids:
                errors.append(f"duplicate edge id '{edge.id}'")
            edge_ids.add(edge.id)
            if edge.to.block_id not in block_ids:
                errors.append(f"edge '{edge.id}' points to unknown block '{edge.to.block_id}'")
            elif edge.to.step_id and edge.to.step_id not in steps_by_block[edge.to.block_id]:
                errors.append(
                    f"edge '{edge.id}' points to unknown step '{edge.to.step_id}' "
                    f"in block '{edge.to.block_id}'"
                )

        for step in typebot.all_steps():
            referenced = [step.outgoing_edge_id]
            referenced += [getattr(step, "true_edge_id", None), getattr(step, "false_edge_id", None)]
            if is_choice_input(step):
                referenced += [item.outgoing_edge_id for item in step.items]
            for edge_id in referenced:
                if edge_id and edge_id not in edge_ids:
                    errors.append(f"step '{step.id}' references unknown edge '{edge_id}'")

        return errors

    # ── Parsing ───────────────────────────────────────

    @staticmethod
    def parse_typebot(raw: dict[str, Any]) -> Typebot:
        """Parse a raw dict into a Typebot, filling in parent ids left implicit."""
        blocks = []
        for raw_block in raw.get("blocks", []):
            steps = []
            for raw_step in raw_block.get("steps", []):
                step = {"block_id": raw_block.get("id", ""), **raw_step}
                if "items" in step:
                    step["items"] = [{"step_id": step.get("id", ""), **i} for i in step["items"]]
                steps.append(step)
            blocks.append({**raw_block, "steps": steps})
        return Typebot.model_validate({**raw, "blocks": blocks})
