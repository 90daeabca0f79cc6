"""
Generative Analysis Client
Wraps the Gemini API (or a mock) behind a single generate() call
"""
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from csvinsight.config import Settings
from csvinsight.errors import (
    AICallFailed,
    AIConfigurationError,
    AIContentBlocked,
    AIResponseMalformed,
)

logger = logging.getLogger(__name__)

RAW_EXCERPT_CHARS = 100


# Prompt variants - the caller decides which one it is sending
@dataclass(frozen=True)
class PlainText:
    text: str

    def to_contents(self) -> List[Dict]:
        return [{"role": "user", "parts": [{"text": self.text}]}]

    def as_text(self) -> str:
        return self.text


@dataclass(frozen=True)
class Turn:
    role: str  # user, model
    parts: tuple

    def to_content(self) -> Dict:
        return {"role": self.role, "parts": [dict(part) for part in self.parts]}


@dataclass(frozen=True)
class ChatHistory:
    turns: tuple

    def to_contents(self) -> List[Dict]:
        return [turn.to_content() for turn in self.turns]

    def as_text(self) -> str:
        return "\n".join(
            f"{turn.role}: " + "".join(part.get("text", "") for part in turn.parts)
            for turn in self.turns
        )


@dataclass(frozen=True)
class PartsArray:
    parts: tuple

    def to_contents(self) -> List[Dict]:
        return [{"role": "user", "parts": [dict(part) for part in self.parts]}]

    def as_text(self) -> str:
        return "".join(part.get("text", "") for part in self.parts)


Prompt = Union[PlainText, ChatHistory, PartsArray]


def parse_json_text(text: str) -> Any:
    """Parse a JSON response, tolerating a Markdown code fence around it"""
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    cleaned = cleaned.strip()

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        excerpt = text[:RAW_EXCERPT_CHARS]
        logger.error("Failed to parse JSON response from AI: %s. Raw text: %r", exc, excerpt)
        raise AIResponseMalformed(
            f'Failed to parse expected JSON response from AI. Raw text: "{excerpt}..."',
            raw_excerpt=excerpt,
        ) from exc


class BaseAnalysisClient(ABC):
    """Base class for generative AI clients"""

    @abstractmethod
    def generate(self, model: str, prompt: Prompt, expect_json: bool = False) -> Union[str, Any]:
        """
        Generate a response for ``prompt``

        Returns the text, or the parsed JSON value when ``expect_json`` is set.
        Raises UpstreamAIError subclasses; never retries.
        """


class GeminiAnalysisClient(BaseAnalysisClient):
    """
    Gemini API integration:
    - Safety settings configuration
    - JSON response mode
    - Block reason and finish reason reporting
    """

    GENERATION_CONFIG = {
        "temperature": 0.7,
        "top_k": 1,
        "top_p": 1,
        "max_output_tokens": 2048,
    }

    SAFETY_SETTINGS = [
        {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
        {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
        {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
        {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    ]

    def __init__(self, api_key: str, genai_module=None):
        if not api_key:
            raise AIConfigurationError()
        self.api_key = api_key
        if genai_module is None:
            import google.generativeai as genai_module
        self._genai = genai_module
        self._genai.configure(api_key=api_key)

    def generate(self, model: str, prompt: Prompt, expect_json: bool = False) -> Union[str, Any]:
        generation_config = dict(self.GENERATION_CONFIG)
        if expect_json:
            generation_config["response_mime_type"] = "application/json"

        client = self._genai.GenerativeModel(
            model_name=model,
            safety_settings=self.SAFETY_SETTINGS,
            generation_config=generation_config,
        )

        try:
            response = client.generate_content(prompt.to_contents())
        except Exception as e:
            logger.error("Error calling Gemini API (model=%s): %s", model, e)
            if "API key not valid" in str(e):
                logger.error("Check that GEMINI_API_KEY is correct and has the necessary permissions.")
            raise AICallFailed(f"Gemini API call failed: {e}") from e

        text = self._extract_text(response)
        if expect_json:
            return parse_json_text(text)
        return text

    def _extract_text(self, response) -> str:
        candidates = list(getattr(response, "candidates", None) or [])
        if not candidates:
            feedback = getattr(response, "prompt_feedback", None)
            block_reason = _enum_name(getattr(feedback, "block_reason", None))
            if block_reason and block_reason != "BLOCK_REASON_UNSPECIFIED":
                details = getattr(feedback, "block_reason_message", None) or "No additional details."
                raise AIContentBlocked(
                    f"Content generation blocked. Reason: {block_reason}. Details: {details}",
                    block_reason=block_reason,
                )
            logger.warning("Gemini API returned no candidates or an empty response")
            raise AICallFailed("Gemini API returned no candidates or an empty response.")

        candidate = candidates[0]
        finish_reason = _enum_name(getattr(candidate, "finish_reason", None))

        if finish_reason and finish_reason not in ("STOP", "FINISH_REASON_UNSPECIFIED"):
            message = f"Content generation finished with reason: {finish_reason}."
            problems = [
                f"{_enum_name(r.category)} was {_enum_name(r.probability)}"
                for r in getattr(candidate, "safety_ratings", None) or []
                if getattr(r, "blocked", False) or _enum_name(r.probability) in ("HIGH", "MEDIUM")
            ]
            if problems:
                message += " Safety issues detected: " + ", ".join(problems)
            logger.warning(message)
            if finish_reason == "SAFETY":
                raise AIContentBlocked(message, block_reason=finish_reason)

        content = getattr(candidate, "content", None)
        parts = list(getattr(content, "parts", None) or [])
        if not parts:
            raise AICallFailed(
                f"Gemini API returned a candidate with no content parts. Finish reason: {finish_reason}"
            )

        text = getattr(parts[0], "text", None)
        if not isinstance(text, str):
            raise AICallFailed("Gemini response part is not in the expected text format.")
        return text


def _enum_name(value) -> Optional[str]:
    """Name of a proto enum value, or its string form"""
    if value is None:
        return None
    name = getattr(value, "name", None)
    return name if name is not None else str(value)


class MockAnalysisClient(BaseAnalysisClient):
    """
    Mock AI client for development and testing
    Produces deterministic, clearly marked responses shaped like the real ones
    """

    MODEL_NAME = "mock-gemini"

    HEADERS_LINE = re.compile(r"^\s*Headers:\s*(.*)$", re.MULTILINE)
    QUESTION_LINE = re.compile(r'^\s*Latest user message:\s*"(.*)"\s*$', re.MULTILINE)

    def generate(self, model: str, prompt: Prompt, expect_json: bool = False) -> Union[str, Any]:
        text = prompt.as_text()
        logger.debug("Mock AI call (model=%s, expect_json=%s)", model, expect_json)

        if not expect_json:
            return "[MOCK] A tabular dataset suited to descriptive statistics and trend analysis."
        if "conciseChatMessage" in text:
            return self._chat_response(text)
        if "initialFindings" in text:
            return self._topic_response()
        return self._summary_response(text)

    def _summary_response(self, prompt: str) -> Dict:
        match = self.HEADERS_LINE.search(prompt)
        headers = [h.strip() for h in match.group(1).split(",")] if match else []
        return {
            "columns": [
                {
                    "name": header,
                    "inferredType": "other",
                    "stats": {"missingValues": 0},
                    "description": f"[MOCK] Column {header}",
                }
                for header in headers if header
            ],
            "rowInsights": [],
            "generalObservations": ["[MOCK] Generated without calling the AI service"],
            "potentialProblems": [],
        }

    def _topic_response(self) -> Dict:
        return {
            "initialFindings": "[MOCK] Initial findings for this topic.",
            "thoughtProcess": "- Reviewed the data summary.\n- Looked for patterns.",
            "questionSuggestions": ["[MOCK] Which column varies the most?"],
        }

    def _chat_response(self, prompt: str) -> Dict:
        match = self.QUESTION_LINE.search(prompt)
        question = match.group(1) if match else ""
        return {
            "conciseChatMessage": "[MOCK] Here is a short answer.",
            "detailedAnalysisBlock": {
                "questionAsked": question,
                "detailedFindings": "[MOCK] Detailed findings.",
                "specificThoughtProcess": "[MOCK] Based on the data summary.",
                "followUpSuggestions": ["[MOCK] What else stands out?"],
            },
        }


def build_ai_client(settings: Settings) -> BaseAnalysisClient:
    """
    Return the client implementation selected by configuration.
    A missing API key is reported on the first call, not at startup.
    """
    if settings.use_mock_ai:
        return MockAnalysisClient()
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY is not set; AI calls will fail until it is configured")
        return UnconfiguredAnalysisClient()
    return GeminiAnalysisClient(api_key=settings.gemini_api_key)


class UnconfiguredAnalysisClient(BaseAnalysisClient):
    """Stand-in used when no API key is configured"""

    def generate(self, model: str, prompt: Prompt, expect_json: bool = False):
        raise AIConfigurationError()
