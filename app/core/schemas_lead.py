"""Lead-qualification signals extracted alongside the plan."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

BudgetBand = Literal["Not specified", "<$5k", "$5k–$20k", "$20k–$50k", ">$50k"]
Authority = Literal["Owner/Partner", "Director+", "Staff", "Unknown"]
Urgency = Literal["Now (0–30d)", "Soon (31–90d)", "Later (90+ d)", "Unknown"]
NeedClarity = Literal["Clear", "Vague", "Exploratory"]
DataReadiness = Literal["Low", "Medium", "High"]
StackMaturity = Literal["Manual/Spreadsheets", "Basic SaaS", "Integrated", "Unknown"]
Complexity = Literal["Low", "Med", "High"]


class LeadSignals(BaseModel):
    """Qualification signals for an SMB considering an AI project."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    budget_band: BudgetBand
    authority: Authority
    urgency: Urgency
    need_clarity: NeedClarity
    data_readiness: DataReadiness
    stack_maturity: StackMaturity
    complexity: Complexity
    geography: str | None = None
    industry: str | None = None
    website_found: bool | None = None
    docs_count: int | None = None
    research_coverage: float | None = Field(default=None, ge=0, le=100)
    score: float = Field(ge=0, le=100)


def _enum_property(literal: Any) -> dict[str, Any]:
    return {"type": "string", "enum": list(literal.__args__)}


LEAD_SIGNALS_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "budgetBand": _enum_property(BudgetBand),
        "authority": _enum_property(Authority),
        "urgency": _enum_property(Urgency),
        "needClarity": _enum_property(NeedClarity),
        "dataReadiness": _enum_property(DataReadiness),
        "stackMaturity": _enum_property(StackMaturity),
        "complexity": _enum_property(Complexity),
        "geography": {"type": "string"},
        "industry": {"type": "string"},
        "websiteFound": {"type": "boolean"},
        "docsCount": {"type": "number"},
        "researchCoverage": {"type": "number"},
        "score": {"type": "number"},
    },
    "required": [
        "budgetBand",
        "authority",
        "urgency",
        "needClarity",
        "dataReadiness",
        "stackMaturity",
        "complexity",
        "score",
    ],
    "additionalProperties": False,
}


def compute_lead_score(signals: LeadSignals) -> int:
    """Deterministic 0-100 score from the qualification signals."""
    score = 0
    if signals.authority == "Owner/Partner":
        score += 20
    if signals.budget_band == "$5k–$20k":
        score += 15
    if signals.budget_band in ("$20k–$50k", ">$50k"):
        score += 30
    if signals.urgency in ("Now (0–30d)", "Soon (31–90d)"):
        score += 15
    if signals.data_readiness == "Medium":
        score += 10
    if signals.data_readiness == "High":
        score += 20
    if signals.stack_maturity in ("Basic SaaS", "Integrated"):
        score += 10
    if (signals.research_coverage or 0) >= 60:
        score += 5
    return max(0, min(100, score))
