"""Tests for the typebot registry."""
import json

import pytest

from models.schemas import ChoiceInputStep, TextBubbleStep
from services.registry import TypebotRegistry

from helpers import block, edge, start_block, text, typebot


RAW_TYPEBOT = {
    "id": "faq",
    "name": "FAQ",
    "variables": [{"id": "v-topic", "name": "Topic"}],
    "blocks": [
        {"id": "start", "title": "Start", "steps": [
            {"id": "s", "type": "start", "outgoing_edge_id": "e1"},
        ]},
        {"id": "ask", "title": "Ask", "steps": [
            {"id": "hello", "type": "text", "content": {"plain_text": "Pick a topic"}},
            {"id": "topic", "type": "choice input", "options": {"variable_id": "v-topic"},
             "items": [{"id": "i1", "content": "Billing", "outgoing_edge_id": "e2"}]},
        ]},
        {"id": "billing", "title": "Billing", "steps": [
            {"id": "bill", "type": "text", "content": {"plain_text": "Billing FAQ"}},
        ]},
    ],
    "edges": [
        {"id": "e1", "from": {"block_id": "start", "step_id": "s"}, "to": {"block_id": "ask"}},
        {"id": "e2", "from": {"block_id": "ask", "item_id": "i1"}, "to": {"block_id": "billing"}},
    ],
}


class TestRegistration:
    def test_register_and_get(self, greeting_typebot):
        registry = TypebotRegistry()
        registry.register(greeting_typebot)
        assert registry.get("greeting") is greeting_typebot
        assert registry.get("missing") is None
        assert registry.list_all() == [greeting_typebot]

    def test_parse_fills_implicit_parent_ids(self):
        registry = TypebotRegistry()
        [tb] = registry.register_from_config([RAW_TYPEBOT])
        choice = tb.find_block("ask").steps[1]
        assert isinstance(choice, ChoiceInputStep)
        assert choice.block_id == "ask"
        assert choice.items[0].step_id == "topic"
        assert isinstance(tb.find_block("billing").steps[0], TextBubbleStep)
        assert tb.find_edge("e2").from_.item_id == "i1"

    def test_load_yaml_and_json_files(self, tmp_path):
        import yaml

        yaml_path = tmp_path / "flows.yaml"
        yaml_path.write_text(yaml.safe_dump({"typebots": [RAW_TYPEBOT]}))
        json_path = tmp_path / "other.json"
        json_path.write_text(json.dumps({**RAW_TYPEBOT, "id": "faq-2"}))

        registry = TypebotRegistry()
        registry.load_file(str(yaml_path))
        registry.load_file(str(json_path))
        assert {t.id for t in registry.list_all()} == {"faq", "faq-2"}

    @pytest.mark.asyncio
    async def test_fetch_returns_private_copy(self, greeting_typebot):
        registry = TypebotRegistry()
        registry.register(greeting_typebot)
        fetched = await registry.fetch("greeting")
        fetched.blocks.clear()
        assert registry.get("greeting").blocks
        assert await registry.fetch("missing") is None


class TestValidation:
    def test_reports_every_problem(self):
        broken = typebot(
            "broken",
            blocks=[
                block("b1", text("t1", "Hi", edge="e-missing")),
                block("b1", text("t1", "again")),
            ],
            edges=[edge("e1", "nowhere"), edge("e2", "b1", to_step="ghost")],
        )
        with pytest.raises(ValueError) as exc:
            TypebotRegistry().register(broken)
        message = str(exc.value)
        assert "duplicate block id 'b1'" in message
        assert "duplicate step id 't1'" in message
        assert "typebot has no start step" in message
        assert "points to unknown block 'nowhere'" in message
        assert "points to unknown step 'ghost'" in message
        assert "references unknown edge 'e-missing'" in message

    def test_step_in_wrong_block(self):
        tb = typebot("t", blocks=[start_block("e1"), block("b", text("x", "Hi"))],
                     edges=[edge("e1", "b")])
        tb.blocks[1].steps[0].block_id = "elsewhere"
        with pytest.raises(ValueError, match="declares block 'elsewhere'"):
            TypebotRegistry().register(tb)

    def test_condition_edges_are_checked(self, condition_typebot):
        condition_typebot.edges = [e for e in condition_typebot.edges if e.id != "e-child"]
        with pytest.raises(ValueError, match="unknown edge 'e-child'"):
            TypebotRegistry().register(condition_typebot)
