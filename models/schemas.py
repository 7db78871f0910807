"""
Core data models for the flow chat engine.

A Typebot is one conversational flow graph: ordered blocks of steps,
connected by edges, plus the variables the steps read and write.
These are the universal types shared across all modules.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class StepKind(str, Enum):
    """The five families every step belongs to."""
    START = "start"
    BUBBLE = "bubble"
    INPUT = "input"
    LOGIC = "logic"
    INTEGRATION = "integration"


class BubbleStepType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    EMBED = "embed"


class InputStepType(str, Enum):
    TEXT = "text input"
    NUMBER = "number input"
    EMAIL = "email input"
    URL = "url input"
    DATE = "date input"
    PHONE = "phone number input"
    CHOICE = "choice input"


class LogicStepType(str, Enum):
    SET_VARIABLE = "Set variable"
    CONDITION = "Condition"
    REDIRECT = "Redirect"
    TYPEBOT_LINK = "Typebot link"


class IntegrationStepType(str, Enum):
    WEBHOOK = "Webhook"
    GOOGLE_SHEETS = "Google Sheets"
    EMAIL = "Email"


class ComparisonOperator(str, Enum):
    EQUAL = "Equal to"
    NOT_EQUAL = "Not equal"
    CONTAINS = "Contains"
    GREATER = "Greater than"
    LESS = "Less than"
    IS_SET = "Is set"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class GoogleSheetsAction(str, Enum):
    INSERT_ROW = "Insert a row"
    UPDATE_ROW = "Update a row"
    GET = "Get data from sheet"


# ──────────────────────────────────────────────────────────────
#  Variables & Edges
# ──────────────────────────────────────────────────────────────

class Variable(BaseModel):
    """A named value shared by every step of a conversation."""
    id: str = Field(default_factory=lambda: f"v{uuid.uuid4().hex[:12]}")
    name: str
    value: Optional[Any] = None


class EdgeSource(BaseModel):
    block_id: str = ""
    step_id: Optional[str] = None
    item_id: Optional[str] = None                 # set when the edge leaves a choice item


class EdgeTarget(BaseModel):
    block_id: str
    step_id: Optional[str] = None                 # start inside the block at this step


class Edge(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: f"e{uuid.uuid4().hex[:12]}")
    from_: EdgeSource = Field(default_factory=EdgeSource, alias="from")
    to: EdgeTarget


# ──────────────────────────────────────────────────────────────
#  Step base classes
# ──────────────────────────────────────────────────────────────

class StepBase(BaseModel):
    kind: ClassVar[StepKind]

    id: str
    block_id: str = ""
    outgoing_edge_id: Optional[str] = None


class StartStep(StepBase):
    kind: ClassVar[StepKind] = StepKind.START
    type: Literal["start"] = "start"
    label: str = "Start"


# ── Bubbles ───────────────────────────────────────────────────

class TextBubbleContent(BaseModel):
    html: str = ""
    plain_text: str = ""


class BubbleStepBase(StepBase):
    kind: ClassVar[StepKind] = StepKind.BUBBLE


class TextBubbleStep(BubbleStepBase):
    type: Literal["text"] = "text"
    content: TextBubbleContent = Field(default_factory=TextBubbleContent)
    retry_of: Optional[str] = None                # input step id when this bubble is a retry prompt


class MediaContent(BaseModel):
    url: str = ""


class ImageBubbleStep(BubbleStepBase):
    type: Literal["image"] = "image"
    content: MediaContent = Field(default_factory=MediaContent)


class VideoContent(MediaContent):
    type: str = "url"                             # url | youtube | vimeo


class VideoBubbleStep(BubbleStepBase):
    type: Literal["video"] = "video"
    content: VideoContent = Field(default_factory=VideoContent)


class EmbedContent(MediaContent):
    height: int = 400


class EmbedBubbleStep(BubbleStepBase):
    type: Literal["embed"] = "embed"
    content: EmbedContent = Field(default_factory=EmbedContent)


# ── Inputs ────────────────────────────────────────────────────

class InputOptions(BaseModel):
    variable_id: Optional[str] = None
    placeholder: str = "Type your answer..."
    button_label: str = "Send"


class RetryableInputOptions(InputOptions):
    retry_message_content: str = "This answer doesn't seem to be valid. Can you type it again?"


class NumberInputOptions(InputOptions):
    min: Optional[float] = None
    max: Optional[float] = None


class DateInputOptions(InputOptions):
    is_range: bool = False
    has_time: bool = False


class ChoiceInputOptions(InputOptions):
    is_multiple_choice: bool = False


class ChoiceItem(BaseModel):
    id: str = Field(default_factory=lambda: f"i{uuid.uuid4().hex[:12]}")
    step_id: str = ""
    content: str = ""
    outgoing_edge_id: Optional[str] = None


class InputStepBase(StepBase):
    kind: ClassVar[StepKind] = StepKind.INPUT
    options: InputOptions = Field(default_factory=InputOptions)


class TextInputStep(InputStepBase):
    type: Literal["text input"] = "text input"


class NumberInputStep(InputStepBase):
    type: Literal["number input"] = "number input"
    options: NumberInputOptions = Field(default_factory=NumberInputOptions)


class EmailInputStep(InputStepBase):
    type: Literal["email input"] = "email input"
    options: RetryableInputOptions = Field(default_factory=lambda: RetryableInputOptions(
        retry_message_content="This email doesn't seem to be valid. Can you type it again?",
    ))


class UrlInputStep(InputStepBase):
    type: Literal["url input"] = "url input"
    options: RetryableInputOptions = Field(default_factory=lambda: RetryableInputOptions(
        retry_message_content="This URL doesn't seem to be valid. Can you type it again?",
    ))


class DateInputStep(InputStepBase):
    type: Literal["date input"] = "date input"
    options: DateInputOptions = Field(default_factory=DateInputOptions)


class PhoneNumberInputStep(InputStepBase):
    type: Literal["phone number input"] = "phone number input"
    options: RetryableInputOptions = Field(default_factory=lambda: RetryableInputOptions(
        retry_message_content="This phone number doesn't seem to be valid. Can you type it again?",
    ))


class ChoiceInputStep(InputStepBase):
    type: Literal["choice input"] = "choice input"
    options: ChoiceInputOptions = Field(default_factory=ChoiceInputOptions)
    items: list[ChoiceItem] = []


# ── Logic ─────────────────────────────────────────────────────

class LogicStepBase(StepBase):
    kind: ClassVar[StepKind] = StepKind.LOGIC


class SetVariableOptions(BaseModel):
    variable_id: Optional[str] = None
    expression_to_evaluate: str = ""


class SetVariableStep(LogicStepBase):
    type: Literal["Set variable"] = "Set variable"
    options: SetVariableOptions = Field(default_factory=SetVariableOptions)


class Comparison(BaseModel):
    id: str = Field(default_factory=lambda: f"c{uuid.uuid4().hex[:12]}")
    variable_id: Optional[str] = None
    comparison_operator: Optional[ComparisonOperator] = None
    value: Optional[str] = None


class ConditionOptions(BaseModel):
    comparisons: list[Comparison] = []
    logical_operator: LogicalOperator = LogicalOperator.AND


class ConditionStep(LogicStepBase):
    type: Literal["Condition"] = "Condition"
    options: ConditionOptions = Field(default_factory=ConditionOptions)
    true_edge_id: Optional[str] = None
    false_edge_id: Optional[str] = None


class RedirectOptions(BaseModel):
    url: Optional[str] = None
    is_new_tab: bool = False


class RedirectStep(LogicStepBase):
    type: Literal["Redirect"] = "Redirect"
    options: RedirectOptions = Field(default_factory=RedirectOptions)


class TypebotLinkOptions(BaseModel):
    typebot_id: Optional[str] = None              # a typebot id, or "current"
    block_id: Optional[str] = None                # entry block; defaults to the start block


class TypebotLinkStep(LogicStepBase):
    type: Literal["Typebot link"] = "Typebot link"
    options: TypebotLinkOptions = Field(default_factory=TypebotLinkOptions)


# ── Integrations ──────────────────────────────────────────────

class IntegrationStepBase(StepBase):
    kind: ClassVar[StepKind] = StepKind.INTEGRATION


class KeyValue(BaseModel):
    key: str = ""
    value: str = ""


class ResponseVariableMapping(BaseModel):
    variable_id: Optional[str] = None
    body_path: str = ""                           # dot-path into the JSON response, e.g. "data.0.name"


class WebhookOptions(BaseModel):
    url: Optional[str] = None
    method: HttpMethod = HttpMethod.POST
    headers: list[KeyValue] = []
    query_params: list[KeyValue] = []
    body: Optional[str] = None                    # raw body; "{{state}}" sends the parsed answers
    response_variable_mapping: list[ResponseVariableMapping] = []


class WebhookStep(IntegrationStepBase):
    type: Literal["Webhook"] = "Webhook"
    options: WebhookOptions = Field(default_factory=WebhookOptions)


class SheetCell(BaseModel):
    column: str = ""
    value: str = ""


class ExtractingCell(BaseModel):
    column: str = ""
    variable_id: Optional[str] = None


class GoogleSheetsOptions(BaseModel):
    action: Optional[GoogleSheetsAction] = None
    credentials_id: Optional[str] = None
    spreadsheet_id: Optional[str] = None
    sheet_id: Optional[str] = None
    cells_to_insert: list[SheetCell] = []
    reference_cell: Optional[SheetCell] = None
    cells_to_extract: list[ExtractingCell] = []


class GoogleSheetsStep(IntegrationStepBase):
    type: Literal["Google Sheets"] = "Google Sheets"
    options: GoogleSheetsOptions = Field(default_factory=GoogleSheetsOptions)


class SendEmailOptions(BaseModel):
    credentials_id: str = "default"
    recipients: list[str] = []
    subject: str = ""
    body: str = ""


class SendEmailStep(IntegrationStepBase):
    type: Literal["Email"] = "Email"
    options: SendEmailOptions = Field(default_factory=SendEmailOptions)


# ──────────────────────────────────────────────────────────────
#  Step union, discriminated on "type"
# ──────────────────────────────────────────────────────────────

BubbleStep = Union[TextBubbleStep, ImageBubbleStep, VideoBubbleStep, EmbedBubbleStep]
InputStep = Union[
    TextInputStep, NumberInputStep, EmailInputStep, UrlInputStep,
    DateInputStep, PhoneNumberInputStep, ChoiceInputStep,
]
LogicStep = Union[SetVariableStep, ConditionStep, RedirectStep, TypebotLinkStep]
IntegrationStep = Union[WebhookStep, GoogleSheetsStep, SendEmailStep]

Step = Annotated[
    Union[
        StartStep,
        TextBubbleStep, ImageBubbleStep, VideoBubbleStep, EmbedBubbleStep,
        TextInputStep, NumberInputStep, EmailInputStep, UrlInputStep,
        DateInputStep, PhoneNumberInputStep, ChoiceInputStep,
        SetVariableStep, ConditionStep, RedirectStep, TypebotLinkStep,
        WebhookStep, GoogleSheetsStep, SendEmailStep,
    ],
    Field(discriminator="type"),
]


def is_start_step(step: StepBase) -> bool:
    return step.kind == StepKind.START


def is_bubble_step(step: StepBase) -> bool:
    return step.kind == StepKind.BUBBLE


def is_input_step(step: StepBase) -> bool:
    return step.kind == StepKind.INPUT


def is_logic_step(step: StepBase) -> bool:
    return step.kind == StepKind.LOGIC


def is_integration_step(step: StepBase) -> bool:
    return step.kind == StepKind.INTEGRATION


def is_choice_input(step: StepBase) -> bool:
    return isinstance(step, ChoiceInputStep)


# ──────────────────────────────────────────────────────────────
#  Block & Typebot
# ──────────────────────────────────────────────────────────────

class Block(BaseModel):
    """An ordered group of steps rendered as one continuous chat segment."""
    id: str
    title: str = ""
    steps: list[Step] = []


class HostAvatar(BaseModel):
    is_enabled: bool = True
    url: Optional[str] = None


class ChatTheme(BaseModel):
    host_avatar: Optional[HostAvatar] = None


class Theme(BaseModel):
    """Display-only configuration; the engine only reads the host avatar."""
    chat: ChatTheme = Field(default_factory=ChatTheme)
    general: dict[str, Any] = {}


class Typebot(BaseModel):
    """One conversational flow graph."""
    id: str
    name: str = ""
    blocks: list[Block] = []
    edges: list[Edge] = []
    variables: list[Variable] = []
    theme: Theme = Field(default_factory=Theme)

    def find_block(self, block_id: str) -> Optional[Block]:
        return next((b for b in self.blocks if b.id == block_id), None)

    def find_edge(self, edge_id: str) -> Optional[Edge]:
        return next((e for e in self.edges if e.id == edge_id), None)

    def find_variable(self, variable_id: str) -> Optional[Variable]:
        return next((v for v in self.variables if v.id == variable_id), None)

    def start_block(self) -> Optional[Block]:
        return next(
            (b for b in self.blocks if any(is_start_step(s) for s in b.steps)),
            None,
        )

    def all_steps(self) -> list[StepBase]:
        return [s for b in self.blocks for s in b.steps]


# ──────────────────────────────────────────────────────────────
#  Results & execution logs
# ──────────────────────────────────────────────────────────────

class Answer(BaseModel):
    step_id: str
    block_id: str
    content: str
    variable_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ResultValues(BaseModel):
    """Everything a visitor has produced so far: answers plus variable values."""
    answers: list[Answer] = []
    variables: list[Variable] = []
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class LogEntry(BaseModel):
    """Execution trace entry shown to flow authors."""
    status: Literal["success", "error", "info"] = "info"
    description: str
    details: Optional[Any] = None
