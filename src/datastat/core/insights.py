"""
insights.py
─────────────────────────────────────────────────────────────────────────────
Payloads exchanged with the natural-language reasoning service.

 - build_analysis_prompt: free-text question + variable summaries + sample rows
 - build_report_prompt:   report request grounded in pre-computed aggregates
 - parse_analysis_response: JSON reply -> AnalysisResponse (chart passed through)

No network calls happen here; the host sends the prompt and hands the reply
back to parse_analysis_response.
─────────────────────────────────────────────────────────────────────────────
"""

import json
import re
from typing import Any, Dict, Sequence, Union

from pydantic import ValidationError

from datastat.models import AnalysisResponse, Row, VariableSummary
from datastat.utils.exceptions import ReasoningResponseError
from datastat.utils.logger import get_logger

logger = get_logger(__name__)


# ── intent hints ──────────────────────────────────────────────────────────────
def wants_chart(query: str) -> bool:
    return bool(re.search(r"plot|chart|graph|visuali[sz]|histogram|scatter|trend line", query.lower()))


def _summaries_json(summaries: Sequence[VariableSummary]) -> str:
    return json.dumps(
        [s.model_dump(exclude_none=True) for s in summaries], indent=2, default=str
    )


# ── prompts ───────────────────────────────────────────────────────────────────
_ROLE = (
    "You are DataStat AI, a senior data analyst and statistician. "
    "You answer questions about the user's dataset, and you are fluent in "
    "Stata-style output."
)

_RESPONSE_CONTRACT = """Respond with a single JSON object:
{
  "intent": "ANALYSIS" | "CHART" | "UNKNOWN",
  "textResponse": "<markdown answer>",
  "chartConfig": {"type": "bar|line|scatter|area|pie", "title": "...",
                  "xAxisKey": "<column>", "yAxisKey": "<column>",
                  "description": "..."} or null
}"""


def build_analysis_prompt(
    query: str,
    summaries: Sequence[VariableSummary],
    sample_rows: Sequence[Row],
) -> str:
    """
    Build the context sent for a free-text question.

    Args:
        query: The user's question, verbatim.
        summaries: Variable summaries of the active sheet.
        sample_rows: A few raw rows for illustration.

    Returns:
        The prompt text.
    """
    chart_hint = (
        "The user is asking for a visualization: set intent to CHART and fill chartConfig "
        "using column names from the summaries."
        if wants_chart(query)
        else "Use intent ANALYSIS unless the user explicitly asks for a plot."
    )
    return (
        f"{_ROLE}\n\n"
        f"# Current Dataset Context\n"
        f"Variables (columns):\n{_summaries_json(summaries)}\n\n"
        f"First {len(sample_rows)} rows of data for reference:\n"
        f"{json.dumps(list(sample_rows), indent=2, default=str)}\n\n"
        f"# User Query\n\"{query}\"\n\n"
        f"# Instructions\n"
        f"- {chart_hint}\n"
        f"- Use markdown headers, bullet points and '**Metric**: Value' pairs.\n"
        f"- For regressions or tests, format tables like Stata output and state that "
        f"the figures are estimates derived from the summaries.\n\n"
        f"{_RESPONSE_CONTRACT}"
    )


def build_report_prompt(
    summaries: Sequence[VariableSummary],
    ground_truth: str,
    focus: str = "",
) -> str:
    """Report request whose figures must come from the ground-truth block."""
    focus_line = f"Focus the report on: {focus}\n" if focus else ""
    return (
        f"{_ROLE}\n\n"
        f"Write an executive analysis report for this dataset.\n{focus_line}\n"
        f"Variables:\n{_summaries_json(summaries)}\n\n"
        f"{ground_truth}\n\n"
        f"Rules:\n"
        f"- Every number you cite must appear verbatim in the GROUND TRUTH DATA above.\n"
        f"- Do not recompute sums or averages from the summaries.\n"
        f"- If a figure is not in the ground truth, describe the pattern without a number.\n"
    )


# ── response parsing ──────────────────────────────────────────────────────────
def _extract_json(raw: str) -> str:
    """Strip an optional ```json fence around the payload."""
    match = re.search(r"```(?:json)?\s*(.*?)```", raw, re.DOTALL)
    return match.group(1).strip() if match else raw.strip()


def parse_analysis_response(raw: Union[str, Dict[str, Any]]) -> AnalysisResponse:
    """
    Parse the reasoning service's reply.

    Raises:
        ReasoningResponseError: If the reply is not JSON of the expected shape.
    """
    try:
        payload = json.loads(_extract_json(raw)) if isinstance(raw, str) else raw
        response = AnalysisResponse.model_validate(payload)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.error(f"Unreadable reasoning response: {e}")
        raise ReasoningResponseError(f"The reasoning service returned an unreadable response: {e}")

    if response.intent == "CHART" and response.chart_config is None:
        logger.warning("CHART intent without chartConfig; treating as ANALYSIS")
        response.intent = "ANALYSIS"
    return response
