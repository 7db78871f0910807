"""Shared test fixtures for the flow chat engine."""
import pytest

from config.settings import EngineConfig, IntegrationConfig
from engine.context import ExecutionContext
from models.schemas import (
    Comparison, ComparisonOperator, ConditionOptions, ConditionStep, EmailInputStep,
    RetryableInputOptions, SetVariableOptions, SetVariableStep, Typebot, TypebotLinkOptions,
    TypebotLinkStep, Variable,
)
from services.registry import TypebotRegistry

from helpers import RecordingSink, block, edge, start_block, text, text_input, typebot


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(api_host="http://api.test", is_preview=False, max_chained_blocks=20)


@pytest.fixture
def integration_config() -> IntegrationConfig:
    return IntegrationConfig(timeout_seconds=1.0, retry_attempts=1)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def greeting_typebot() -> Typebot:
    """Start → greeting block [Hi, How are you?, text input → V] → E1 → thanks block."""
    return typebot(
        "greeting",
        blocks=[
            start_block("e-start"),
            block(
                "greet",
                text("hi", "Hi"),
                text("how", "How are you?"),
                text_input("mood", variable_id="V", edge="E1"),
                title="Greeting",
            ),
            block("thanks", text("thanks", "Glad you are {{Mood}}"), title="Thanks"),
        ],
        edges=[edge("e-start", "greet", from_block="start"), edge("E1", "thanks", from_block="greet")],
        variables=[Variable(id="V", name="Mood")],
    )


@pytest.fixture
def email_typebot() -> Typebot:
    """An email input whose invalid answers produce retry bubbles."""
    return typebot(
        "newsletter",
        blocks=[
            start_block("e-start"),
            block(
                "ask",
                text("prompt", "What's your email?"),
                EmailInputStep(
                    id="email",
                    options=RetryableInputOptions(
                        variable_id="v-email",
                        retry_message_content="{{Email}} is not an email, try again",
                    ),
                    outgoing_edge_id="e-done",
                ),
                title="Ask email",
            ),
            block("done", text("bye", "Subscribed {{Email}}"), title="Done"),
        ],
        edges=[edge("e-start", "ask", from_block="start"), edge("e-done", "done", from_block="ask")],
        variables=[Variable(id="v-email", name="Email")],
    )


@pytest.fixture
def condition_typebot() -> Typebot:
    """Routes on Age > {{Limit}} to the adult or child block."""
    return typebot(
        "router",
        blocks=[
            start_block("e-start"),
            block(
                "check",
                ConditionStep(
                    id="cond",
                    options=ConditionOptions(comparisons=[
                        Comparison(variable_id="v-age",
                                   comparison_operator=ComparisonOperator.GREATER,
                                   value="{{Limit}}"),
                    ]),
                    true_edge_id="e-adult",
                    false_edge_id="e-child",
                ),
            ),
            block("adult", text("adult-msg", "Welcome, adult")),
            block("child", text("child-msg", "Welcome, kid")),
        ],
        edges=[
            edge("e-start", "check", from_block="start"),
            edge("e-adult", "adult", from_block="check"),
            edge("e-child", "child", from_block="check"),
        ],
        variables=[
            Variable(id="v-age", name="Age", value=30),
            Variable(id="v-limit", name="Limit", value="18"),
        ],
    )


@pytest.fixture
def nested_registry() -> TypebotRegistry:
    """Typebot A links to B; B writes the shared variable and runs out of edges."""
    registry = TypebotRegistry()
    registry.register(typebot(
        "A",
        blocks=[
            start_block("ea-start", block_id="a-start"),
            block("a1", text("a-in", "in A"),
                  TypebotLinkStep(id="a-link", options=TypebotLinkOptions(typebot_id="B"),
                                  outgoing_edge_id="ea2")),
            block("a2", text("a-after", "A after")),
        ],
        edges=[edge("ea-start", "a1", from_block="a-start"), edge("ea2", "a2", from_block="a1")],
    ))
    registry.register(typebot(
        "B",
        blocks=[
            start_block("eb-start", block_id="b-start"),
            block("b1", text("b-in", "in B"),
                  SetVariableStep(id="b-set", options=SetVariableOptions(
                      variable_id="v-shared", expression_to_evaluate="from B"))),
        ],
        edges=[edge("eb-start", "b1", from_block="b-start")],
        variables=[Variable(id="v-shared", name="Shared")],
    ))
    return registry


@pytest.fixture
def host_typebot() -> Typebot:
    """Host links to A, then shows the shared variable."""
    return typebot(
        "host",
        blocks=[
            start_block("eh-start"),
            block("h1", text("h-before", "host before"),
                  TypebotLinkStep(id="h-link", options=TypebotLinkOptions(typebot_id="A"),
                                  outgoing_edge_id="eh2")),
            block("h2", text("h-after", "host after {{Shared}}")),
        ],
        edges=[edge("eh-start", "h1", from_block="start"), edge("eh2", "h2", from_block="h1")],
        variables=[Variable(id="v-shared", name="Shared")],
    )


@pytest.fixture
def make_context(engine_config, sink):
    """Factory building an ExecutionContext wired to the recording sink."""
    def _make(tb: Typebot, **kwargs) -> ExecutionContext:
        kwargs.setdefault("config", engine_config)
        kwargs.setdefault("log_sink", sink)
        return ExecutionContext(tb, **kwargs)
    return _make
