"""Pydantic schemas for the discovery chat and its plan turn.

Wire models use camelCase aliases because the browser client sends and
expects camelCase keys; Python code works with the snake_case names.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

PLACEHOLDER = "Not yet specified"

CONTEXT_FIELDS = (
    "business_type",
    "pain_points",
    "goals",
    "data_available",
    "prior_tech_use",
    "growth_intent",
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Conversation
# =============================================================================


class ChatTurn(BaseModel):
    """One message in the discovery conversation."""

    role: Literal["user", "assistant", "system"]
    content: str = ""


class AttachedFile(BaseModel):
    """Text content of a file the user attached in the browser."""

    name: str
    content: str = ""


class ContextSummary(_CamelModel):
    """Six-field structured extraction of the business facts gathered so far."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    business_type: str = PLACEHOLDER
    pain_points: str = PLACEHOLDER
    goals: str = PLACEHOLDER
    data_available: str = PLACEHOLDER
    prior_tech_use: str = PLACEHOLDER
    growth_intent: str = PLACEHOLDER

    @field_validator(*CONTEXT_FIELDS, mode="before")
    @classmethod
    def _blank_to_placeholder(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return PLACEHOLDER
        return value

    def to_wire(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)


# Guided JSON schema sent to NIM for the context summary call
CONTEXT_SUMMARY_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {to_camel(name): {"type": "string"} for name in CONTEXT_FIELDS},
    "required": [to_camel(name) for name in CONTEXT_FIELDS],
    "additionalProperties": False,
}


class ChatRequest(_CamelModel):
    """Body of POST /api/chat."""

    messages: list[ChatTurn] = Field(default_factory=list)
    current_step: int = 1
    initial_context: dict[str, Any] | None = None
    website_analysis: dict[str, Any] | None = None
    financial_analysis: dict[str, Any] | None = None
    attached_files: list[AttachedFile] | None = None
    conversation_id: str | None = None
    session_id: str | None = None
    cost_mode: bool = False


# =============================================================================
# Step engine
# =============================================================================


class DiscoveryStep(int, Enum):
    """Discovery phase counter; 1-5 are questions, 6 is the summary turn."""

    QUESTION_1 = 1
    QUESTION_2 = 2
    QUESTION_3 = 3
    QUESTION_4 = 4
    QUESTION_5 = 5
    SUMMARY = 6
    PLAN_REQUESTED = 7


class StepViolation(str, Enum):
    """Ways model output can break the fixed conversational contract."""

    FINAL_QUESTION_EARLY = "final_question_early"
    SUMMARY_TOO_EARLY = "summary_too_early"


# =============================================================================
# Responses
# =============================================================================


class Citation(_CamelModel):
    source_id: str
    page: int | None = None
    url: str | None = None


class ChatResponse(_CamelModel):
    """Question or summary turn."""

    message: str
    context_summary: dict[str, str] | None = None
    fallback: bool | None = None


class PlanResponse(ChatResponse):
    """Plan turn."""

    business_plan_markdown: str
    is_business_plan: bool = True
    research_brief: str | None = None
    citations: list[Citation] | None = None
    lead_signals: dict[str, Any] | None = None
    plan_highlights: list[str] | None = None
