"""
Execution context — the single dependency bundle handed to every step.

One ExecutionContext exists per conversation. It owns a working copy of
the host graph and of every injected linked graph, kept apart so that block
and edge ids only need to be unique inside their own typebot. It also owns
the shared variable store, the link stack and the cancellation token, and exposes
the capabilities logic and integration executors are allowed to use:

  - variable writes           update_variable_value / update_variables
  - execution trace           on_new_log
  - graph edits               create_edge / inject_linked_typebot
  - cross-typebot switching   set_current_typebot_id / push_edge_id_in_linked_typebot_stack
  - graph lookup              fetch_typebot

Writes, edge creation and log entries are dropped once the conversation is
cancelled, so a call that resolves after teardown can never leak state.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import structlog

from config.settings import EngineConfig, get_settings
from engine.link_stack import LinkedTypebotStack
from models.schemas import (
    Answer, Block, Edge, LogEntry, ResultValues, StepBase, Typebot, Variable,
)

logger = structlog.get_logger()

LogSink = Callable[[LogEntry], Any]
TypebotLookup = Callable[[str], Awaitable[Optional[Typebot]]]


# ──────────────────────────────────────────────────────────────
#  Variable store
# ──────────────────────────────────────────────────────────────

class VariableStore:
    """
    Shared mutable store keyed by variable id.
    Visible to the host graph and every linked graph of the conversation.
    """

    def __init__(self, variables: list[Variable] = None):
        self._variables: dict[str, Variable] = {}
        self._answers: list[Answer] = []
        self.add_variables(variables or [])

    @property
    def variables(self) -> list[Variable]:
        return list(self._variables.values())

    @property
    def answers(self) -> list[Answer]:
        return list(self._answers)

    def get(self, variable_id: str) -> Optional[Variable]:
        return self._variables.get(variable_id)

    def find_by_name(self, name: str) -> Optional[Variable]:
        return next((v for v in self._variables.values() if v.name == name), None)

    def add_variables(self, variables: list[Variable]):
        """Register variables not yet known; existing ids keep their value."""
        for variable in variables:
            if variable.id not in self._variables:
                self._variables[variable.id] = variable.model_copy()

    def update_variable_value(self, variable_id: str, value: Any) -> bool:
        variable = self._variables.get(variable_id)
        if variable is None:
            logger.warning("unknown_variable_write", variable_id=variable_id)
            return False
        variable.value = value
        logger.debug("variable_updated", variable_id=variable_id, name=variable.name)
        return True

    def update_variables(self, values: dict[str, Any]):
        for variable_id, value in values.items():
            self.update_variable_value(variable_id, value)

    def add_answer(self, answer: Answer):
        self._answers.append(answer)

    def current_values(self) -> ResultValues:
        return ResultValues(
            answers=[a.model_copy() for a in self._answers],
            variables=[v.model_copy() for v in self._variables.values()],
        )


# ──────────────────────────────────────────────────────────────
#  Cancellation
# ──────────────────────────────────────────────────────────────

class CancellationToken:
    """Set once when the hosting surface tears the conversation down."""

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled


# ──────────────────────────────────────────────────────────────
#  Integration context
# ──────────────────────────────────────────────────────────────

@dataclass
class IntegrationContext:
    """What an integration executor sees when one of its steps runs."""
    api_host: str
    typebot_id: str
    block_id: str
    step_id: str
    variables: list[Variable]
    is_preview: bool
    update_variable_value: Callable[[str, Any], Any]
    update_variables: Callable[[dict[str, Any]], Any]
    result_values: ResultValues
    blocks: list[Block]
    on_new_log: Callable[[LogEntry], None]
    typebot: Optional[Typebot] = None
    metadata: dict[str, Any] = field(default_factory=dict)


# ──────────────────────────────────────────────────────────────
#  Execution context
# ──────────────────────────────────────────────────────────────

class ExecutionContext:
    """Dependency-injected bundle shared by every step of one conversation."""

    def __init__(
        self,
        typebot: Typebot,
        *,
        is_preview: bool = None,
        api_host: str = None,
        log_sink: LogSink = None,
        typebot_lookup: TypebotLookup = None,
        on_redirect: Callable[[str, bool], Any] = None,
        linked_typebots: list[Typebot] = None,
        config: EngineConfig = None,
    ):
        """
        Args:
            typebot:          Host graph. A deep copy is kept as the working graph.
            is_preview:       Simulate integrations instead of calling out.
            api_host:         Base URL used by integrations that go through the API.
            log_sink:         fn(LogEntry) receiving the execution trace.
            typebot_lookup:   async fn(typebot_id) → Typebot | None.
            on_redirect:      fn(url, is_new_tab) called by Redirect steps.
            linked_typebots:  Graphs already known to the conversation.
        """
        config = config or get_settings().engine
        self.typebot = typebot.model_copy(deep=True)
        self.is_preview = config.is_preview if is_preview is None else is_preview
        self.api_host = api_host or config.api_host
        self.current_typebot_id = typebot.id
        self.linked_typebots: list[Typebot] = []
        self.store = VariableStore(self.typebot.variables)
        self.link_stack = LinkedTypebotStack()
        self.token = CancellationToken()
        self._log_sink = log_sink
        self._typebot_lookup = typebot_lookup
        self._on_redirect = on_redirect

        for linked in linked_typebots or []:
            self.linked_typebots.append(linked.model_copy(deep=True))

    # ── Variables ─────────────────────────────────────────────

    @property
    def variables(self) -> list[Variable]:
        return self.store.variables

    def update_variable_value(self, variable_id: str, value: Any):
        if self.token.is_cancelled:
            logger.warning("variable_write_dropped_after_cancel", variable_id=variable_id)
            return
        self.store.update_variable_value(variable_id, value)

    def update_variables(self, values: dict[str, Any]):
        if self.token.is_cancelled:
            logger.warning("variable_write_dropped_after_cancel",
                           variable_ids=list(values.keys()))
            return
        self.store.update_variables(values)

    def add_answer(self, answer: Answer):
        if self.token.is_cancelled:
            return
        self.store.add_answer(answer)

    # ── Execution trace ───────────────────────────────────────

    def on_new_log(self, entry: LogEntry):
        """Fire-and-forget: a failing sink never interrupts traversal."""
        if not self._log_sink:
            return
        if self.token.is_cancelled:
            logger.debug("log_dropped_after_cancel", description=entry.description)
            return
        try:
            self._log_sink(entry)
        except Exception as e:
            logger.error("log_sink_failed", description=entry.description, error=str(e))

    # ── Graph edits ───────────────────────────────────────────

    @property
    def current_typebot(self) -> Typebot:
        """Working graph of the typebot the conversation is currently in."""
        return self.find_typebot(self.current_typebot_id) or self.typebot

    def create_edge(self, edge: Edge) -> str:
        """Add an edge to the current typebot's working graph."""
        if self.token.is_cancelled:
            logger.warning("edge_dropped_after_cancel", edge_id=edge.id)
            return edge.id
        self.current_typebot.edges.append(edge)
        logger.debug("edge_created", edge_id=edge.id, typebot_id=self.current_typebot_id,
                     to_block=edge.to.block_id, to_step=edge.to.step_id)
        return edge.id

    def inject_linked_typebot(self, typebot: Typebot) -> Typebot:
        """Keep a working copy of a linked graph and share its variables."""
        known = self.find_typebot(typebot.id)
        if known is not None:
            return known

        known = typebot.model_copy(deep=True)
        self.linked_typebots.append(known)
        self.store.add_variables(known.variables)

        logger.info("linked_typebot_injected",
                    typebot_id=known.id, blocks=len(known.blocks))
        return known

    def find_typebot(self, typebot_id: str) -> Optional[Typebot]:
        if typebot_id == self.typebot.id:
            return self.typebot
        return next((t for t in self.linked_typebots if t.id == typebot_id), None)

    async def fetch_typebot(self, typebot_id: str) -> Optional[Typebot]:
        if not self._typebot_lookup:
            return None
        return await self._typebot_lookup(typebot_id)

    # ── Cross-typebot switching ───────────────────────────────

    def set_current_typebot_id(self, typebot_id: str):
        if self.token.is_cancelled:
            return
        self.current_typebot_id = typebot_id

    def push_edge_id_in_linked_typebot_stack(self, edge_id: Optional[str], typebot_id: str):
        if self.token.is_cancelled:
            return
        self.link_stack.push(edge_id, typebot_id)

    # ── Misc capabilities ─────────────────────────────────────

    def redirect(self, url: str, is_new_tab: bool = False):
        if self._on_redirect and not self.token.is_cancelled:
            self._on_redirect(url, is_new_tab)

    def integration_context(self, step: StepBase) -> IntegrationContext:
        return IntegrationContext(
            api_host=self.api_host,
            typebot_id=self.current_typebot_id,
            block_id=step.block_id,
            step_id=step.id,
            variables=self.variables,
            is_preview=self.is_preview,
            update_variable_value=self.update_variable_value,
            update_variables=self.update_variables,
            result_values=self.store.current_values(),
            blocks=self.current_typebot.blocks,
            on_new_log=self.on_new_log,
            typebot=self.current_typebot,
        )
