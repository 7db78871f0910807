"""Tests for variable interpolation and expression evaluation."""
from models.schemas import Variable
from services.variables import evaluate_expression, parse_variables, stringify


VARIABLES = [
    Variable(id="v1", name="Name", value="Ada"),
    Variable(id="v2", name="Price", value=9.5),
    Variable(id="v3", name="Count", value=4.0),
    Variable(id="v4", name="Unset"),
]


class TestParseVariables:
    def test_substitutes_known_names(self):
        assert parse_variables(VARIABLES, "Hi {{Name}}, total {{Count}}") == "Hi Ada, total 4"

    def test_unknown_and_unset_become_empty(self):
        assert parse_variables(VARIABLES, "[{{Nope}}][{{Unset}}]") == "[][]"

    def test_whitespace_inside_braces(self):
        assert parse_variables(VARIABLES, "{{ Name }}") == "Ada"

    def test_empty_text(self):
        assert parse_variables(VARIABLES, None) == ""
        assert parse_variables(VARIABLES, "") == ""

    def test_stringify(self):
        assert stringify(None) == ""
        assert stringify(3.0) == "3"
        assert stringify(3.25) == "3.25"


class TestEvaluateExpression:
    def test_arithmetic_over_variables(self):
        assert evaluate_expression(VARIABLES, "{{Price}} * {{Count}}") == 38
        assert evaluate_expression(VARIABLES, "({{Count}} + 1) / 2") == 2.5
        assert evaluate_expression(VARIABLES, "-{{Count}} % 3") == 2

    def test_text_is_returned_as_is(self):
        assert evaluate_expression(VARIABLES, "Hello {{Name}}") == "Hello Ada"

    def test_code_is_never_executed(self):
        expression = "__import__('os').getcwd()"
        assert evaluate_expression(VARIABLES, expression) == expression

    def test_huge_powers_are_refused(self):
        assert evaluate_expression(VARIABLES, "2 ** 1000000") == "2 ** 1000000"
        assert evaluate_expression(VARIABLES, "2 ** 10") == 1024

    def test_division_by_zero_returns_text(self):
        assert evaluate_expression(VARIABLES, "1 / 0") == "1 / 0"
