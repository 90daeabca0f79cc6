"""
Prompt Builder
Builds the prompt for each pipeline phase and validates the AI response to it
"""
import json
import logging
from typing import Any, Dict, Iterable, List, Sequence

from csvinsight.errors import AIResponseIncomplete

logger = logging.getLogger(__name__)

SUMMARY_KEYS = ("columns", "rowInsights", "generalObservations", "potentialProblems")
TOPIC_INITIAL_KEYS = ("initialFindings", "thoughtProcess", "questionSuggestions")
CHAT_TURN_KEYS = ("conciseChatMessage", "detailedAnalysisBlock")
DETAILED_BLOCK_KEYS = ("questionAsked", "detailedFindings", "specificThoughtProcess", "followUpSuggestions")

INFERRED_TYPES = ("string", "numeric", "boolean", "date", "other")


def _summary_text(data_summary: Any) -> str:
    if isinstance(data_summary, str):
        return data_summary
    return json.dumps(data_summary, indent=2, ensure_ascii=False)


def build_summary_prompt(
    headers: Sequence[str],
    row_count: int,
    column_count: int,
    sample_rows: List[Dict],
) -> str:
    sample_lines = "\n".join(json.dumps(row, ensure_ascii=False) for row in sample_rows)
    return f"""Analyze the following CSV headers and the sample rows provided to produce a comprehensive, structured summary covering both columns and rows.
Headers: {", ".join(headers)}
Total number of rows in the dataset: {row_count}.
Total number of columns in the dataset: {column_count}.
Data sample ({len(sample_rows)} rows):
{sample_lines}

Return a JSON object with the following structure:
{{
  "columns": [
    {{
      "name": "column_name_1",
      "inferredType": "{"/".join(INFERRED_TYPES)}",
      "stats": {{ "mean": null, "median": null, "uniqueValues": null, "missingValues": 0, "min": null, "max": null, "mostFrequent": null }},
      "description": "Short description of the column and its potential meaning."
    }}
  ],
  "rowInsights": [
    {{
      "rowIndexOrIdentifier": "Row number in the sample (0-indexed) or key values identifying the row",
      "observation": "What is notable about this row, e.g. outliers or unusual combinations of values.",
      "relevantColumns": ["column1", "column2"]
    }}
  ],
  "generalObservations": ["General observation 1..."],
  "rowCountProvidedSample": {len(sample_rows)},
  "columnCount": {column_count},
  "potentialProblems": ["Any data quality problems observed, e.g. many missing values or inconsistencies"]
}}
For 'columns.inferredType' use exactly one of: {", ".join(INFERRED_TYPES)}.
For 'columns.stats' give the relevant statistics; use null where a statistic does not apply. Always include 'missingValues'.
For 'rowInsights' pick the 2-3 most distinctive rows of the sample.
Include one entry in 'columns' for every header listed above.
IMPORTANT: the whole response must be a valid JSON object. Any double quotes inside string values MUST be escaped as \\".
"""


def build_nature_description_prompt(data_summary: Any) -> str:
    return f"""Based on the following data summary (column analysis and row insights):
{_summary_text(data_summary)}

Briefly describe the overall nature of this dataset in 1-2 sentences.
Suggest 1-2 general types of analysis it is best suited for, considering both the column characteristics and the row insights.
Be concise and informative. Do not use HTML or Markdown formatting. Respond with plain text only.
"""


def build_topic_initial_prompt(
    topic_display_name: str,
    data_nature_description: str,
    data_summary: Any,
) -> str:
    return f"""You are an AI Data Analysis Agent.
Your mission is to help me perform a cross-analysis and uncover valuable insights related to the topic: "{topic_display_name}".
The data you are analyzing primarily concerns: "{data_nature_description}".
Focus your analysis of "{topic_display_name}" through this lens, considering the overall nature of the dataset.

About Your Data (summary):
{_summary_text(data_summary)}

Your First Response - Initial Analysis & Guidance:
Provide your analysis formatted as a JSON object with the following exact keys:
- "initialFindings": (String) Your key initial observations and insights related to "{topic_display_name}" based on the data summary. Aim for 2-3 short paragraphs of 2-4 sentences each.
- "thoughtProcess": (String) The key steps (3-4 points) of your reasoning as a bulleted list (e.g. "- Analyzed X.\\n- Compared Y and Z.\\n- Concluded A.").
- "questionSuggestions": (Array of strings) 2-3 concise follow-up questions the user could ask to dig deeper.

Interaction Style: Be analytical, insightful, and proactive in suggesting next steps.
"""


def build_chat_turn_prompt(
    topic_display_name: str,
    data_nature_description: str,
    data_summary: Any,
    chat_history: Iterable[Dict],
    new_user_message: str,
    analysis_name: str = "N/A",
) -> str:
    """
    ``chat_history`` holds {"role", "parts"} turns in order and must already
    end with the new user message.
    """
    history_lines = "\n".join(
        f"{turn['role']}: " + "".join(part.get("text", "") for part in turn["parts"])
        for turn in chat_history
    )
    return f"""You are an AI Data Analysis Agent. Continue the conversation based on the history provided.
The overall analysis is named "{analysis_name}" and the current topic of discussion is "{topic_display_name}".
The data you are analyzing primarily concerns: "{data_nature_description}".

Data Summary (for context, do not repeat it in your answer unless asked):
{_summary_text(data_summary)}

Conversation History (most recent user message is last):
{history_lines}

Latest user message: "{new_user_message}"

Your Response:
Answer the latest user message using the conversation history.
Format your response as a JSON object with the following exact keys:
- "conciseChatMessage": (String) A brief, direct answer suitable for a chat bubble.
- "detailedAnalysisBlock": (Object) A structured block for the main display area, with these keys:
    - "questionAsked": (String) The user's question you are responding to.
    - "detailedFindings": (String) Your detailed findings, explanations or analysis.
    - "specificThoughtProcess": (String) How you arrived at these findings, referencing the data summary or earlier turns if relevant.
    - "followUpSuggestions": (Array of strings) 2-3 follow-up questions the user could ask next.

Interaction Style: Be analytical, insightful, and answer the question directly.
"""


def require_keys(payload: Any, keys: Sequence[str], context: str) -> Dict:
    """Raise AIResponseIncomplete unless ``payload`` is an object holding every key"""
    if not isinstance(payload, dict):
        raise AIResponseIncomplete(
            f"AI response for {context} is not a JSON object.",
            missing_keys=list(keys),
        )
    missing = [key for key in keys if key not in payload or payload[key] is None]
    if missing:
        logger.error("AI response for %s is missing required fields: %s", context, missing)
        raise AIResponseIncomplete(
            f"AI response for {context} was incomplete. Missing: {', '.join(missing)}",
            missing_keys=missing,
        )
    return payload


def parse_summary_response(payload: Any) -> Dict:
    summary = require_keys(payload, SUMMARY_KEYS, "data summary")
    for key in SUMMARY_KEYS:
        if not isinstance(summary[key], list):
            raise AIResponseIncomplete(
                f"AI response for data summary has a non-list '{key}'.",
                missing_keys=[key],
            )
    return summary


def parse_nature_description(text: Any) -> str:
    if not isinstance(text, str) or not text.strip():
        raise AIResponseIncomplete("AI returned an empty data nature description.")
    return text.strip()


def parse_topic_initial_response(payload: Any) -> Dict:
    result = require_keys(payload, TOPIC_INITIAL_KEYS, "initial analysis")
    if not isinstance(result["questionSuggestions"], list):
        raise AIResponseIncomplete(
            "AI response for initial analysis has a non-list 'questionSuggestions'.",
            missing_keys=["questionSuggestions"],
        )
    return result


def parse_chat_turn_response(payload: Any) -> Dict:
    response = require_keys(payload, CHAT_TURN_KEYS, "chat")
    require_keys(response["detailedAnalysisBlock"], DETAILED_BLOCK_KEYS, "chat detailed block")
    return response
