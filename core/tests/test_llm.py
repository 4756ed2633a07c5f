"""Tests for LLM providers and reply parsing."""

from types import SimpleNamespace

import litellm
import pytest

from agentflow.config import RuntimeConfig
from agentflow.errors import LLMError, LLMTransportError
from agentflow.llm.litellm import LiteLLMProvider
from agentflow.llm.mock import DEFAULT_MOCK_RESPONSE, MockLLMProvider
from agentflow.llm.parsing import clean_assistant_text, parse_json_response, parse_true_false
from agentflow.llm.provider import LLMCallOptions


class TestParsing:
    def test_clean_strips_fences_and_tokens(self):
        assert clean_assistant_text('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert clean_assistant_text("hello<|eot_id|>") == "hello"
        assert clean_assistant_text(None) == ""

    def test_parse_json_with_chatter(self):
        assert parse_json_response('Sure! {"capability": "calendar.list"} hope that helps') == {
            "capability": "calendar.list"
        }

    def test_parse_json_failure_returns_none(self):
        assert parse_json_response("no json here") is None
        assert parse_json_response("") is None

    def test_true_false_contract(self):
        assert parse_true_false("TRUE") is True
        assert parse_true_false(" TRUE \n") is True
        assert parse_true_false("true") is False
        assert parse_true_false("True") is False
        assert parse_true_false("TRUE.") is False
        assert parse_true_false(None) is False


class TestCallOptions:
    def test_merged_prefers_set_fields(self):
        base = LLMCallOptions(model="a", temperature=0.2)
        merged = base.merged(LLMCallOptions(model="b", seed=3))
        assert merged.model == "b"
        assert merged.temperature == 0.2
        assert merged.seed == 3
        assert base.merged(None) is base


class TestMockLLMProvider:
    @pytest.mark.asyncio
    async def test_substring_responses_and_default(self):
        llm = MockLLMProvider(responses={"calendar": "CAL"})
        hit = await llm.call("check my calendar")
        miss = await llm.call("something else")
        assert hit.text == "CAL"
        assert miss.text == DEFAULT_MOCK_RESPONSE
        assert llm.prompts == ["check my calendar", "something else"]

    @pytest.mark.asyncio
    async def test_script_wins_and_options_recorded(self):
        llm = MockLLMProvider(responses={"x": "no"}, script=lambda p, o: "scripted")
        result = await llm.call("x", LLMCallOptions(model="gpt-test", provider="openai"))
        assert result.text == "scripted"
        assert result.model == "gpt-test"
        assert result.provider == "openai"
        assert result.raw["choices"][0]["message"]["content"] == "scripted"

    @pytest.mark.asyncio
    async def test_failure_wrapped(self):
        llm = MockLLMProvider(fail_with=RuntimeError("boom"))
        with pytest.raises(LLMError, match="boom"):
            await llm.call("hi")


class TestLiteLLMProvider:
    def _config(self) -> RuntimeConfig:
        return RuntimeConfig(model="openai/gpt-4o-mini", max_tokens=100, api_key=None)

    @pytest.mark.asyncio
    async def test_builds_request(self, monkeypatch):
        captured = {}

        async def fake_acompletion(**kwargs):
            captured.update(kwargs)
            return SimpleNamespace(
                choices=[SimpleNamespace(message=SimpleNamespace(content="hello"))],
                usage=SimpleNamespace(prompt_tokens=5, completion_tokens=2),
            )

        monkeypatch.setattr(litellm, "acompletion", fake_acompletion)
        llm = LiteLLMProvider(config=self._config())
        result = await llm.call("hi", LLMCallOptions(system="be brief", seed=1, temperature=0.0))

        assert result.text == "hello"
        assert result.provider == "openai"
        assert result.usage == {"input_tokens": 5, "output_tokens": 2}
        assert captured["messages"][0] == {"role": "system", "content": "be brief"}
        assert captured["seed"] == 1
        assert captured["temperature"] == 0.0
        assert captured["max_tokens"] == 100

    @pytest.mark.asyncio
    async def test_provider_prefix(self, monkeypatch):
        captured = {}

        async def fake_acompletion(**kwargs):
            captured.update(kwargs)
            return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="ok"))])

        monkeypatch.setattr(litellm, "acompletion", fake_acompletion)
        llm = LiteLLMProvider(model="claude-3-haiku", config=self._config())
        await llm.call("hi", LLMCallOptions(provider="anthropic"))
        assert captured["model"] == "anthropic/claude-3-haiku"

    @pytest.mark.asyncio
    async def test_transport_error(self, monkeypatch):
        async def fake_acompletion(**kwargs):
            raise ConnectionError("unreachable")

        monkeypatch.setattr(litellm, "acompletion", fake_acompletion)
        with pytest.raises(LLMTransportError, match="unreachable"):
            await LiteLLMProvider(config=self._config()).call("hi")
