"""
Default collaborators for the flow chat engine.

The engine only depends on the callables it is handed; these are the
implementations a host gets when it does not supply its own.
"""
from services.inputs import parse_retry_step, step_can_be_retried, validate_answer
from services.integration import IntegrationExecutor
from services.logic import execute_logic
from services.registry import TypebotRegistry
from services.sample_result import parse_answers, parse_sample_result
from services.variables import evaluate_expression, parse_variables
