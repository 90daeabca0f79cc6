"""
Unit tests for the generative analysis client
"""
from types import SimpleNamespace

import pytest

from csvinsight.config import Settings
from csvinsight.errors import (
    AICallFailed,
    AIConfigurationError,
    AIContentBlocked,
    AIResponseMalformed,
)
from csvinsight.services.ai_client import (
    ChatHistory,
    GeminiAnalysisClient,
    MockAnalysisClient,
    PartsArray,
    PlainText,
    Turn,
    UnconfiguredAnalysisClient,
    build_ai_client,
    parse_json_text,
)


def _enum(name):
    return SimpleNamespace(name=name)


def _response(text=None, finish_reason="STOP", candidates=True, block_reason=None, safety_ratings=()):
    if not candidates:
        feedback = SimpleNamespace(
            block_reason=_enum(block_reason) if block_reason else _enum("BLOCK_REASON_UNSPECIFIED"),
            block_reason_message="Prompt flagged",
        )
        return SimpleNamespace(candidates=[], prompt_feedback=feedback)
    parts = [SimpleNamespace(text=text)] if text is not None else []
    candidate = SimpleNamespace(
        finish_reason=_enum(finish_reason),
        safety_ratings=list(safety_ratings),
        content=SimpleNamespace(parts=parts),
    )
    return SimpleNamespace(candidates=[candidate], prompt_feedback=None)


class FakeGenAI:
    """Stands in for the google.generativeai module"""
    
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.configured_key = None
        self.models = []
        self.contents = []
    
    def configure(self, api_key):
        self.configured_key = api_key
    
    def GenerativeModel(self, model_name, safety_settings, generation_config):
        self.models.append({"model_name": model_name, "generation_config": generation_config})
        return self
    
    def generate_content(self, contents):
        self.contents.append(contents)
        if self.error:
            raise self.error
        return self.response


class TestPromptVariants:
    """Each prompt variant maps to Gemini contents in one place"""
    
    def test_plain_text(self):
        assert PlainText("hi").to_contents() == [{"role": "user", "parts": [{"text": "hi"}]}]
    
    def test_chat_history(self):
        history = ChatHistory((
            Turn("user", ({"text": "Q"},)),
            Turn("model", ({"text": "A"},)),
        ))
        
        assert history.to_contents() == [
            {"role": "user", "parts": [{"text": "Q"}]},
            {"role": "model", "parts": [{"text": "A"}]},
        ]
        assert history.as_text() == "user: Q\nmodel: A"
    
    def test_parts_array(self):
        parts = PartsArray(({"text": "a"}, {"text": "b"}))
        
        assert parts.to_contents() == [{"role": "user", "parts": [{"text": "a"}, {"text": "b"}]}]
        assert parts.as_text() == "ab"


class TestParseJsonText:
    
    def test_plain_json(self):
        assert parse_json_text('{"a": 1}') == {"a": 1}
    
    def test_fenced_json(self):
        """Test a Markdown fence around the JSON is removed"""
        assert parse_json_text('```json\n{"a": 1}\n```') == {"a": 1}
    
    def test_malformed_keeps_excerpt(self):
        """Test the error carries the first 100 characters of the raw text"""
        raw = "not json " * 30
        
        with pytest.raises(AIResponseMalformed) as excinfo:
            parse_json_text(raw)
        
        assert excinfo.value.raw_excerpt == raw[:100]
        assert raw[:100] in str(excinfo.value)


class TestGeminiAnalysisClient:
    """Test suite for the Gemini client against a fake SDK"""
    
    def test_requires_api_key(self):
        with pytest.raises(AIConfigurationError):
            GeminiAnalysisClient(api_key="", genai_module=FakeGenAI())
    
    def test_text_response(self):
        genai = FakeGenAI(_response("A dataset of orders."))
        client = GeminiAnalysisClient(api_key="key", genai_module=genai)
        
        result = client.generate("gemini-test", PlainText("Describe"))
        
        assert result == "A dataset of orders."
        assert genai.configured_key == "key"
        assert genai.models[0]["model_name"] == "gemini-test"
        assert "response_mime_type" not in genai.models[0]["generation_config"]
        assert genai.contents[0] == [{"role": "user", "parts": [{"text": "Describe"}]}]
    
    def test_json_response(self):
        genai = FakeGenAI(_response('{"ok": true}'))
        client = GeminiAnalysisClient(api_key="key", genai_module=genai)
        
        result = client.generate("gemini-test", PlainText("x"), expect_json=True)
        
        assert result == {"ok": True}
        assert genai.models[0]["generation_config"]["response_mime_type"] == "application/json"
    
    def test_malformed_json(self):
        client = GeminiAnalysisClient(api_key="key", genai_module=FakeGenAI(_response("{oops")))
        
        with pytest.raises(AIResponseMalformed):
            client.generate("m", PlainText("x"), expect_json=True)
    
    def test_transport_failure(self):
        """Test SDK exceptions become AICallFailed without retries"""
        genai = FakeGenAI(error=RuntimeError("429 quota exceeded"))
        client = GeminiAnalysisClient(api_key="key", genai_module=genai)
        
        with pytest.raises(AICallFailed) as excinfo:
            client.generate("m", PlainText("x"))
        
        assert "429 quota exceeded" in str(excinfo.value)
        assert len(genai.contents) == 1
    
    def test_prompt_blocked(self):
        """Test the block reason is surfaced verbatim"""
        client = GeminiAnalysisClient(
            api_key="key",
            genai_module=FakeGenAI(_response(candidates=False, block_reason="SAFETY")),
        )
        
        with pytest.raises(AIContentBlocked) as excinfo:
            client.generate("m", PlainText("x"))
        
        assert excinfo.value.block_reason == "SAFETY"
        assert "Reason: SAFETY" in str(excinfo.value)
    
    def test_no_candidates(self):
        client = GeminiAnalysisClient(api_key="key", genai_module=FakeGenAI(_response(candidates=False)))
        
        with pytest.raises(AICallFailed):
            client.generate("m", PlainText("x"))
    
    def test_safety_finish_is_fatal(self):
        rating = SimpleNamespace(category=_enum("HARM_CATEGORY_HARASSMENT"), probability=_enum("HIGH"), blocked=True)
        client = GeminiAnalysisClient(
            api_key="key",
            genai_module=FakeGenAI(_response("partial", finish_reason="SAFETY", safety_ratings=[rating])),
        )
        
        with pytest.raises(AIContentBlocked) as excinfo:
            client.generate("m", PlainText("x"))
        
        assert "HARM_CATEGORY_HARASSMENT was HIGH" in str(excinfo.value)
    
    def test_max_tokens_returns_partial_text(self):
        """Test length truncation is not fatal"""
        client = GeminiAnalysisClient(
            api_key="key",
            genai_module=FakeGenAI(_response("partial text", finish_reason="MAX_TOKENS")),
        )
        
        assert client.generate("m", PlainText("x")) == "partial text"
    
    def test_candidate_without_parts(self):
        client = GeminiAnalysisClient(
            api_key="key",
            genai_module=FakeGenAI(_response(None, finish_reason="OTHER")),
        )
        
        with pytest.raises(AICallFailed):
            client.generate("m", PlainText("x"))


class TestBuildAIClient:
    
    def test_mock_selected(self):
        settings = Settings(_env_file=None, use_mock_ai=True)
        
        assert isinstance(build_ai_client(settings), MockAnalysisClient)
    
    def test_missing_key_is_configuration_error(self):
        """Test a missing key surfaces as a typed error on use"""
        settings = Settings(_env_file=None, use_mock_ai=False, gemini_api_key=None)
        client = build_ai_client(settings)
        
        assert isinstance(client, UnconfiguredAnalysisClient)
        with pytest.raises(AIConfigurationError) as excinfo:
            client.generate("m", PlainText("x"))
        assert excinfo.value.message == "AI service is not configured"


class TestMockAnalysisClient:
    """The mock answers in the shape each phase expects"""
    
    def test_summary_columns_follow_headers(self):
        from csvinsight.services import prompt_builder
        
        prompt = prompt_builder.build_summary_prompt(["A", "B"], 2, 2, [{"A": "1", "B": "2"}])
        
        summary = MockAnalysisClient().generate("m", PlainText(prompt), expect_json=True)
        
        assert [c["name"] for c in summary["columns"]] == ["A", "B"]
        prompt_builder.parse_summary_response(summary)
    
    def test_chat_response_echoes_question(self):
        from csvinsight.services import prompt_builder
        
        prompt = prompt_builder.build_chat_turn_prompt(
            "T", "D", {}, [{"role": "user", "parts": [{"text": "Why?"}]}], "Why?"
        )
        
        response = MockAnalysisClient().generate("m", PlainText(prompt), expect_json=True)
        
        prompt_builder.parse_chat_turn_response(response)
        assert response["detailedAnalysisBlock"]["questionAsked"] == "Why?"
    
    def test_description_is_text(self):
        assert isinstance(MockAnalysisClient().generate("m", PlainText("Describe")), str)
    
    def test_keeps_no_per_call_state(self):
        """Test the default client does not accumulate anything across calls"""
        client = MockAnalysisClient()
        
        for _ in range(3):
            client.generate("m", PlainText("Describe"))
        
        assert vars(client) == {}
