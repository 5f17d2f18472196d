"""Pydantic schemas for website and financial-document analyses."""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

WEBSITE_UNKNOWN = "Unable to determine from website content"
FINANCIAL_UNKNOWN = "Unable to determine from provided data"


class WebsiteAnalysis(BaseModel):
    """Business facts extracted from a company website."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    products_services: str = WEBSITE_UNKNOWN
    customer_segment: str = WEBSITE_UNKNOWN
    tech_stack: str = WEBSITE_UNKNOWN
    marketing_strengths: str = WEBSITE_UNKNOWN
    marketing_weaknesses: str = WEBSITE_UNKNOWN


class FinancialAnalysis(BaseModel):
    """Business insights extracted from an uploaded financial statement."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    business_type: str = FINANCIAL_UNKNOWN
    revenue_trend: str = FINANCIAL_UNKNOWN
    largest_cost_centers: str = FINANCIAL_UNKNOWN
    profit_margins: str = FINANCIAL_UNKNOWN
    seasonality: str = FINANCIAL_UNKNOWN
    cash_flow_risks: str = FINANCIAL_UNKNOWN


def _guided_schema(model: type[BaseModel]) -> dict[str, Any]:
    keys = [to_camel(name) for name in model.model_fields]
    return {
        "type": "object",
        "properties": {key: {"type": "string"} for key in keys},
        "required": keys,
        "additionalProperties": False,
    }


WEBSITE_ANALYSIS_JSON_SCHEMA = _guided_schema(WebsiteAnalysis)
FINANCIAL_ANALYSIS_JSON_SCHEMA = _guided_schema(FinancialAnalysis)


class WebsiteAnalysisRequest(BaseModel):
    url: str | None = None
