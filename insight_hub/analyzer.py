"""
Analysis client: CSV text in, validated AnalysisResult out.

Flow:
1. Truncate the CSV text to MAX_CSV_CHARS (silently lossy)
2. Fill the analyst prompt template with the truncated text
3. Single structured-output LLM call constrained by ANALYSIS_SCHEMA
4. Parse the JSON and validate it against the AnalysisResult model

Every failure along the way surfaces as AnalysisError. Nothing is retried.
"""

import asyncio
import json
import logging
import os
from typing import Any, Dict

from pydantic import ValidationError

from . import config
from .llm_client import generate
from .schemas import CHART_TYPES, SEVERITIES, AnalysisResult

# Configure module logger
logger = logging.getLogger(__name__)

MAX_CSV_CHARS = 20000

# Prompt file paths
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
ANALYSIS_PROMPT_PATH = os.path.join(BASE_DIR, "prompts", "analysis_prompt.txt")


class AnalysisError(Exception):
    """The remote analysis could not produce a usable result."""


def _string(description: str, **extra: Any) -> Dict[str, Any]:
    return {"type": "STRING", "description": description, **extra}


ANALYSIS_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "summary": _string(
            "A high-level summary of emerging patterns, trends, and overall health of the system based on the provided data."
        ),
        "anomalies": {
            "type": "ARRAY",
            "description": "A list of identified anomalies or outliers in the data.",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "description": _string("A clear and concise description of the anomaly."),
                    "severity": _string(
                        "The estimated severity of the anomaly.",
                        enum=list(SEVERITIES),
                    ),
                    "implication": _string("The potential business or technical impact of this anomaly."),
                },
                "required": ["description", "severity", "implication"],
            },
        },
        "rootCauses": {
            "type": "ARRAY",
            "description": "An analysis of the potential root causes for the identified anomalies.",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "anomaly": _string("A short title for the anomaly this root cause relates to."),
                    "cause": _string("The suspected root cause of the anomaly."),
                    "recommendation": _string(
                        "A suggested action or next step to validate the cause and resolve the issue."
                    ),
                },
                "required": ["anomaly", "cause", "recommendation"],
            },
        },
        "chartSuggestion": {
            "type": "OBJECT",
            "description": (
                "A suggestion for a chart to visualize a key trend or pattern in the data. "
                "This should be the most insightful visualization possible."
            ),
            "properties": {
                "chartType": _string("The suggested type of chart.", enum=list(CHART_TYPES)),
                "title": _string("A descriptive title for the chart."),
                "description": _string("A short explanation of what the chart shows and why it's useful."),
                "data": {
                    "type": "ARRAY",
                    "description": (
                        "The data for the chart. Each object must have a 'name' (string label) "
                        "and a 'value' (number)."
                    ),
                    "items": {
                        "type": "OBJECT",
                        "properties": {
                            "name": _string("The label for the data point (an x-axis category or a pie slice)."),
                            "value": {
                                "type": "NUMBER",
                                "description": "The numerical value associated with the label.",
                            },
                        },
                        "required": ["name", "value"],
                    },
                },
            },
            "required": ["chartType", "title", "description", "data"],
        },
    },
    "required": ["summary", "anomalies", "rootCauses"],
}


def _read_prompt(path: str) -> str:
    """Read a prompt text file."""
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def truncate_csv(csv_text: str, limit: int = MAX_CSV_CHARS) -> str:
    return csv_text[:limit]


def build_prompt(csv_text: str) -> str:
    template = _read_prompt(ANALYSIS_PROMPT_PATH)
    return template.format(csv_data=truncate_csv(csv_text))


def parse_analysis(text: str) -> AnalysisResult:
    """
    Parse and validate the model's JSON text.

    The response is requested as application/json, so anything that is not a
    single JSON object matching AnalysisResult is rejected.
    """
    try:
        payload = json.loads(text.strip())
    except json.JSONDecodeError as e:
        raise AnalysisError(f"Invalid JSON in LLM response: {e}") from e

    if not isinstance(payload, dict):
        raise AnalysisError(f"Expected a JSON object, got {type(payload).__name__}")

    try:
        return AnalysisResult.model_validate(payload)
    except ValidationError as e:
        raise AnalysisError(f"LLM response does not match the analysis schema: {e}") from e


async def analyze_csv(csv_text: str) -> AnalysisResult:
    """
    Analyze CSV text with a single structured-output LLM call.

    Args:
        csv_text: Full uploaded text; only the first MAX_CSV_CHARS are sent.

    Returns:
        The validated AnalysisResult.

    Raises:
        AnalysisError: network/SDK failure, timeout, invalid JSON or schema mismatch.
    """
    if len(csv_text) > MAX_CSV_CHARS:
        logger.info("analyze.truncated chars=%d limit=%d", len(csv_text), MAX_CSV_CHARS)

    try:
        prompt = build_prompt(csv_text)
    except FileNotFoundError as e:
        logger.error("Analysis prompt file not found: %s", ANALYSIS_PROMPT_PATH)
        raise AnalysisError(f"Analysis prompt file not found: {e}") from e

    timeout = config.get_analysis_timeout()
    try:
        response = await asyncio.wait_for(generate(prompt, ANALYSIS_SCHEMA), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise AnalysisError(f"LLM call timed out after {timeout:.0f}s") from e
    except Exception as e:
        raise AnalysisError(f"LLM call failed: {e}") from e

    logger.debug("LLM raw response: %s", response[:1000])
    result = parse_analysis(response)
    logger.info(
        "analyze.parsed anomalies=%d root_causes=%d chart=%s",
        len(result.anomalies),
        len(result.root_causes),
        result.chart_suggestion.chart_type if result.chart_suggestion else None,
    )
    return result
