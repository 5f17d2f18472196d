"""Website and financial-document analysis chains.

Both send the source text to NIM with a guided-JSON schema. When the model
answers but the output does not parse, a keyword heuristic fills in a
coarse analysis instead.
"""

import json
import re

from pydantic import ValidationError

from app.core.llm import parse_llm_json_dict
from app.core.logging import get_logger
from app.core.nim_client import chat_completion
from app.core.prompts import (
    FINANCIAL_ANALYSIS_SYSTEM,
    WEBSITE_ANALYSIS_SYSTEM,
    financial_analysis_prompt,
    website_analysis_prompt,
)
from app.core.schemas_analysis import (
    FINANCIAL_ANALYSIS_JSON_SCHEMA,
    FINANCIAL_UNKNOWN,
    WEBSITE_ANALYSIS_JSON_SCHEMA,
    WEBSITE_UNKNOWN,
    FinancialAnalysis,
    WebsiteAnalysis,
)

logger = get_logger(__name__)

SAMPLE_CHARS = 200

# Returned with an error when the source could not be analysed at all
WEBSITE_FAILURE_ANALYSIS = WebsiteAnalysis(
    products_services="Website analysis unavailable",
    customer_segment="Unable to determine",
    tech_stack="Standard web technologies",
    marketing_strengths="Professional web presence",
    marketing_weaknesses="Analysis could not be completed",
)


def financial_failure_analysis(reason: str) -> FinancialAnalysis:
    return FinancialAnalysis(
        business_type="Small Business",
        revenue_trend=f"Analysis unavailable - {reason}",
        largest_cost_centers="Unable to determine",
        profit_margins="Data not available",
        seasonality="Analysis incomplete",
        cash_flow_risks="Requires manual review",
    )


def _fill_blanks(data: dict, keys: list[str], unknown: str) -> dict:
    for key in keys:
        value = data.get(key)
        if not isinstance(value, str) or not value.strip():
            data[key] = unknown
    return data


def heuristic_website_analysis(content: str) -> WebsiteAnalysis:
    has_products = re.search(r"product|service|solution|offer", content, re.IGNORECASE)
    has_contact = re.search(r"contact|about|team|company", content, re.IGNORECASE)
    has_tech = re.search(r"api|integration|software|platform|technology", content, re.IGNORECASE)
    return WebsiteAnalysis(
        products_services=(
            "Products/services mentioned on website"
            if has_products
            else "Business offerings not clearly specified"
        ),
        customer_segment="Professional business audience" if has_contact else "General audience",
        tech_stack="Technology-focused business" if has_tech else "Standard web presence",
        marketing_strengths="Professional website presence",
        marketing_weaknesses="Limited detailed analysis available",
        contentSample=content[:SAMPLE_CHARS] + "...",
    )


def heuristic_financial_analysis(text: str) -> FinancialAnalysis:
    has_revenue = re.search(r"revenue|sales|income", text, re.IGNORECASE)
    has_costs = re.search(r"cost|expense|expenditure", text, re.IGNORECASE)
    has_numbers = re.search(r"\$[\d,]+|\d+%|\d+\.\d+", text)
    return FinancialAnalysis(
        business_type="Small to Medium Business" if has_numbers else "Business Entity",
        revenue_trend=(
            "Revenue data present in document"
            if has_revenue
            else "Revenue information not clearly identified"
        ),
        largest_cost_centers=(
            "Cost information found in document" if has_costs else "Cost breakdown not clearly visible"
        ),
        profit_margins=(
            "Financial metrics present" if has_numbers else "Profit margin data not clearly identifiable"
        ),
        seasonality="Seasonal patterns require time-series data analysis",
        cash_flow_risks=(
            "Financial data available for assessment"
            if has_numbers
            else "Cash flow analysis requires more detailed data"
        ),
        extractedTextSample=text[:SAMPLE_CHARS] + "...",
    )


async def analyze_website_content(url: str, content: str) -> WebsiteAnalysis:
    """
    Extract products, customers, tech stack and marketing notes from site text.

    Raises:
        LLMGatewayError: The model call failed
    """
    result = await chat_completion(
        [
            {"role": "system", "content": WEBSITE_ANALYSIS_SYSTEM},
            {"role": "user", "content": website_analysis_prompt(url, content)},
        ],
        temperature=0.2,
        top_p=0.9,
        max_tokens=800,
        guided_json=WEBSITE_ANALYSIS_JSON_SCHEMA,
        phase="website_analysis",
    )

    try:
        data = parse_llm_json_dict(result.content)
        data = _fill_blanks(data, WEBSITE_ANALYSIS_JSON_SCHEMA["required"], WEBSITE_UNKNOWN)
        return WebsiteAnalysis.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Website analysis for {url} did not parse, using heuristics: {e}")
        return heuristic_website_analysis(content)


async def analyze_financial_text(filename: str, text: str) -> FinancialAnalysis:
    """
    Extract revenue, cost, margin, seasonality and cash-flow notes.

    Raises:
        LLMGatewayError: The model call failed
    """
    result = await chat_completion(
        [
            {"role": "system", "content": FINANCIAL_ANALYSIS_SYSTEM},
            {"role": "user", "content": financial_analysis_prompt(filename, text)},
        ],
        temperature=0.2,
        top_p=0.9,
        max_tokens=800,
        guided_json=FINANCIAL_ANALYSIS_JSON_SCHEMA,
        phase="financial_analysis",
    )

    try:
        data = parse_llm_json_dict(result.content)
        data = _fill_blanks(data, FINANCIAL_ANALYSIS_JSON_SCHEMA["required"], FINANCIAL_UNKNOWN)
        return FinancialAnalysis.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Financial analysis for {filename} did not parse, using heuristics: {e}")
        return heuristic_financial_analysis(text)
