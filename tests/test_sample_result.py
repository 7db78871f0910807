"""Tests for webhook result shaping."""
from models.schemas import (
    Answer, EmailInputStep, ResultValues, RetryableInputOptions, Variable, WebhookStep,
)
from services.sample_result import parse_answers, parse_sample_result

from helpers import block, choice, edge, start_block, text, text_input, typebot


def survey_typebot():
    """start → intro (email) → pick (choice) → hook; an unrelated block also exists."""
    return typebot(
        "survey",
        blocks=[
            start_block("e-start"),
            block("intro", text("hello", "Hello"),
                  EmailInputStep(id="email", options=RetryableInputOptions(variable_id="v-email")),
                  title="Intro"),
            block("pick", choice("plan", [("Free", None), ("Pro", None)]), title="Plan"),
            block("hook", WebhookStep(id="w"), title="Send"),
            block("island", text_input("unreachable"), title="Island"),
        ],
        edges=[
            edge("e-start", "intro", from_block="start"),
            edge("e-intro", "pick", from_block="intro"),
            edge("e-pick", "hook", from_block="pick"),
        ],
        variables=[Variable(id="v-email", name="Email"), Variable(id="v-extra", name="Extra")],
    )


class TestParseSampleResult:
    def test_lists_previous_inputs_with_sample_values(self):
        result = parse_sample_result(survey_typebot(), "hook")
        assert result["message"].startswith("This is a sample result")
        assert "Submitted at" in result
        assert result["Email"] == "test@email.com"
        assert result["Plan"] == "Free"
        assert "Island" not in result

    def test_variables_fill_in_as_content(self):
        result = parse_sample_result(survey_typebot(), "hook")
        assert result["Extra"] == "content"

    def test_multiple_choice_joins_items(self):
        tb = survey_typebot()
        tb.find_block("pick").steps[0].options.is_multiple_choice = True
        assert parse_sample_result(tb, "hook")["Plan"] == "Free, Pro"

    def test_block_without_predecessors(self):
        result = parse_sample_result(survey_typebot(), "island")
        assert set(result) == {"message", "Submitted at", "Email", "Extra"}


class TestParseAnswers:
    def test_labels_by_variable_then_block_title(self):
        tb = survey_typebot()
        values = ResultValues(
            answers=[
                Answer(step_id="email", block_id="intro", content="a@b.co", variable_id="v-email"),
                Answer(step_id="plan", block_id="pick", content="Pro"),
            ],
            variables=[Variable(id="v-email", name="Email", value="a@b.co"),
                       Variable(id="v-extra", name="Extra", value=7)],
        )
        result = parse_answers(tb, values)
        assert result["Email"] == "a@b.co"
        assert result["Plan"] == "Pro"
        assert result["Extra"] == 7
        assert result["Submitted at"] == values.created_at.isoformat()
