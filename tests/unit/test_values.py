"""Unit tests for value generation and the concrete LLM adapters.

All pure unit tests: no network. The LLM is mocked via MockLLMAdapter.
"""

from __future__ import annotations

import json
import logging

import pytest

from entigraph.config import LLMConfig
from entigraph.engine.llm_adapters import NoopLLMAdapter
from entigraph.engine.llm_adapters import OpenAICompatibleLLMAdapter
from entigraph.engine.llm_adapters import build_llm_adapter
from entigraph.engine.llm_adapters import build_value_generator
from entigraph.engine.llm_adapters import parse_chat_completion
from entigraph.engine.values import GenerationRequest
from entigraph.engine.values import LLMAdapter
from entigraph.engine.values import LLMError
from entigraph.engine.values import LLMValueGenerator
from entigraph.engine.values import PlaceholderValueGenerator
from entigraph.engine.values import ValueGenerator
from entigraph.engine.values import build_value_prompt
from entigraph.engine.values import clean_completion


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class MockLLMAdapter:
    """Test double for LLMAdapter.

    Returns a canned response, or raises ``LLMError`` when ``fail`` is set.
    Tracks calls for assertion.
    """

    def __init__(self, response: str = "", *, fail: bool = False) -> None:
        self.calls: list[dict] = []
        self._response = response
        self._fail = fail

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 0.2,
        max_tokens: int = 256,
        timeout_seconds: float = 30.0,
    ) -> str:
        self.calls.append(
            {
                "prompt": prompt,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "timeout_seconds": timeout_seconds,
            }
        )
        if self._fail:
            raise LLMError("provider down")
        return self._response


def _request(**overrides) -> GenerationRequest:
    defaults = {"field_name": "bio", "type_name": "Author"}
    defaults.update(overrides)
    return GenerationRequest(**defaults)


# ===========================================================================
# Placeholder generation
# ===========================================================================


class TestPlaceholderValues:
    def test_satisfies_protocol(self):
        assert isinstance(PlaceholderValueGenerator(), ValueGenerator)

    @pytest.mark.parametrize(
        ("overrides", "expected"),
        [
            ({"field_name": "name", "hint": "Ada"}, "Ada"),
            ({"field_name": "name", "context": "Hello"}, "Author for Hello"),
            ({"field_name": "name"}, "Generated Author"),
            ({"hint": "a poet"}, "bio for a poet"),
            ({"context": "Hello"}, "bio for Hello"),
            ({}, "Generated bio for Author"),
        ],
    )
    async def test_value_rules(self, overrides, expected):
        generator = PlaceholderValueGenerator()
        assert await generator.generate_value(_request(**overrides)) == expected

    async def test_self_reference_inherits_parent_value(self):
        request = _request(
            field_name="name",
            hint="ignored",
            parent_type="Author",
            parent_data={"name": "Ada"},
        )
        assert await PlaceholderValueGenerator().generate_value(request) == "Ada"

    async def test_reference_description(self):
        generator = PlaceholderValueGenerator()
        text = await generator.describe_reference(
            _request(field_name="author", type_name="Author", context="Hello")
        )
        assert text == "A author for author of Hello"
        assert await generator.describe_reference(_request(hint="Ada")) == "Ada"


# ===========================================================================
# LLM-backed generation
# ===========================================================================


class TestLLMValueGenerator:
    async def test_uses_llm_answer(self):
        llm = MockLLMAdapter('"Ada Lovelace"')
        generator = LLMValueGenerator(llm)
        assert await generator.generate_value(_request(field_name="name")) == "Ada Lovelace"
        assert "'name'" in llm.calls[0]["prompt"]

    async def test_passes_llm_config(self):
        llm = MockLLMAdapter("value")
        config = LLMConfig(temperature=0.7, max_tokens=32, timeout_seconds=5.0)
        await LLMValueGenerator(llm, config).generate_value(_request())
        call = llm.calls[0]
        assert call["temperature"] == 0.7
        assert call["max_tokens"] == 32
        assert call["timeout_seconds"] == 5.0

    async def test_error_falls_back_to_placeholder(self, caplog):
        generator = LLMValueGenerator(MockLLMAdapter(fail=True))
        with caplog.at_level(logging.WARNING, logger="entigraph.engine.values"):
            value = await generator.generate_value(_request(hint="a poet"))
        assert value == "bio for a poet"
        assert "LLM generation failed" in caplog.text

    async def test_empty_answer_falls_back(self):
        generator = LLMValueGenerator(NoopLLMAdapter())
        text = await generator.describe_reference(_request(hint="Ada"))
        assert text == "Ada"

    def test_prompt_mentions_hint_and_context(self):
        prompt = build_value_prompt(_request(hint="short", context="Hello"))
        assert "Guidance: short" in prompt
        assert "Context: Hello" in prompt


class TestCleanCompletion:
    def test_strips_code_fence(self):
        assert clean_completion("```text\nAda\n```") == "Ada"

    def test_strips_quotes_and_whitespace(self):
        assert clean_completion("  'Ada'  ") == "Ada"

    def test_plain_text_unchanged(self):
        assert clean_completion("Ada Lovelace") == "Ada Lovelace"


# ===========================================================================
# Adapters
# ===========================================================================


class TestBuildLLMAdapter:
    def test_openai_provider_requires_api_key(self) -> None:
        with pytest.raises(ValueError, match="api_key is required"):
            build_llm_adapter(LLMConfig(provider="openai", api_key=None))

    def test_openai_provider_with_key(self) -> None:
        adapter = build_llm_adapter(LLMConfig(provider="openai", api_key="k"))
        assert isinstance(adapter, OpenAICompatibleLLMAdapter)

    def test_noop_provider_is_supported(self) -> None:
        adapter = build_llm_adapter(LLMConfig(provider="noop"))
        assert isinstance(adapter, NoopLLMAdapter)
        assert isinstance(adapter, LLMAdapter)

    def test_unsupported_provider_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unsupported llm_config.provider"):
            build_llm_adapter(LLMConfig(provider="anthropic"))

    async def test_value_generator_over_noop_backend(self) -> None:
        generator = build_value_generator(LLMConfig(provider="noop"))
        assert isinstance(generator, ValueGenerator)
        assert await generator.generate_value(_request(hint="a poet")) == "bio for a poet"


class TestNoopLLMAdapter:
    async def test_noop_returns_empty_string(self) -> None:
        assert await NoopLLMAdapter().complete("irrelevant") == ""


class TestOpenAICompatibleAdapter:
    async def test_complete_uses_sync_path_via_thread(self, monkeypatch) -> None:
        adapter = OpenAICompatibleLLMAdapter(model="gpt-4", api_key="test")

        def _fake_sync(
            prompt: str, *, temperature: float, max_tokens: int, timeout_seconds: float
        ) -> str:
            assert prompt == "hello"
            assert temperature == 0.3
            assert max_tokens == 77
            assert timeout_seconds == 11.0
            return "world"

        monkeypatch.setattr(adapter, "_complete_sync", _fake_sync)

        result = await adapter.complete(
            "hello",
            temperature=0.3,
            max_tokens=77,
            timeout_seconds=11.0,
        )
        assert result == "world"

    def test_build_request(self) -> None:
        adapter = OpenAICompatibleLLMAdapter(
            model="m", api_key="secret", base_url="http://llm.local/v1/"
        )
        request = adapter._build_request("hi", temperature=0.1, max_tokens=8)
        assert request.full_url == "http://llm.local/v1/chat/completions"
        assert request.get_header("Authorization") == "Bearer secret"
        body = json.loads(request.data)
        assert body["model"] == "m"
        assert body["messages"][0]["role"] == "system"
        assert body["messages"][-1] == {"role": "user", "content": "hi"}

    def test_system_prompt_can_be_disabled(self) -> None:
        adapter = OpenAICompatibleLLMAdapter(model="m", api_key="k", system_prompt="")
        request = adapter._build_request("hi", temperature=0.1, max_tokens=8)
        assert json.loads(request.data)["messages"] == [{"role": "user", "content": "hi"}]

    def test_parse_chat_completion(self) -> None:
        raw = json.dumps({"choices": [{"message": {"content": "Ada"}}]})
        assert parse_chat_completion(raw) == "Ada"

    def test_parse_chat_completion_rejects_missing_content(self) -> None:
        with pytest.raises(LLMError, match="missing choices"):
            parse_chat_completion(json.dumps({"choices": []}))
