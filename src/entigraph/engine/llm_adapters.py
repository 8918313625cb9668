"""LLM backends for generated field values.

``LLMValueGenerator`` sends one short prompt per generated field or draft
placeholder and expects a single plain-text value back. The adapters here
are the transports for those prompts: an OpenAI-compatible chat endpoint
and a no-op backend that makes every value fall back to its placeholder.
"""

from __future__ import annotations

import asyncio
import json
from urllib.error import HTTPError
from urllib.error import URLError
from urllib.request import Request
from urllib.request import urlopen

from entigraph.config import LLMConfig
from entigraph.engine.values import LLMAdapter
from entigraph.engine.values import LLMError
from entigraph.engine.values import LLMValueGenerator

VALUE_SYSTEM_PROMPT = (
    "You fill in fields of database records. "
    "Answer with the field value only: no quotes, labels, or explanation."
)


class NoopLLMAdapter(LLMAdapter):
    """Backend that never answers.

    Every generated value then comes from the deterministic placeholder
    rules, which keeps entity creation offline and reproducible.
    """

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 0.2,
        max_tokens: int = 256,
        timeout_seconds: float = 30.0,
    ) -> str:
        del prompt, temperature, max_tokens, timeout_seconds
        return ""


class OpenAICompatibleLLMAdapter(LLMAdapter):
    """Chat-completions backend for field values.

    Each value prompt is sent as a user message after a fixed system
    message asking for the bare value.
    """

    def __init__(
        self,
        *,
        model: str,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        system_prompt: str = VALUE_SYSTEM_PROMPT,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._system_prompt = system_prompt

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 0.2,
        max_tokens: int = 256,
        timeout_seconds: float = 30.0,
    ) -> str:
        return await asyncio.to_thread(
            self._complete_sync,
            prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_seconds=timeout_seconds,
        )

    def _build_request(
        self,
        prompt: str,
        *,
        temperature: float,
        max_tokens: int,
    ) -> Request:
        messages = []
        if self._system_prompt:
            messages.append({"role": "system", "content": self._system_prompt})
        messages.append({"role": "user", "content": prompt})
        payload = {
            "model": self._model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        return Request(
            url=f"{self._base_url}/chat/completions",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )

    def _complete_sync(
        self,
        prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        timeout_seconds: float,
    ) -> str:
        request = self._build_request(
            prompt, temperature=temperature, max_tokens=max_tokens
        )
        try:
            with urlopen(request, timeout=timeout_seconds) as response:
                raw = response.read().decode("utf-8")
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise LLMError(f"value backend HTTP {exc.code}: {detail[:200]}") from exc
        except URLError as exc:
            raise LLMError(f"value backend network error: {exc.reason}") from exc
        except OSError as exc:
            raise LLMError(f"value backend IO error: {exc}") from exc
        return parse_chat_completion(raw)


def parse_chat_completion(raw: str) -> str:
    """Extract the generated value from a chat-completions body."""
    try:
        data = json.loads(raw)
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        raise LLMError("provider response missing choices[0].message.content") from exc
    if isinstance(content, str):
        return content
    raise LLMError("provider response content must be a string")


def build_llm_adapter(config: LLMConfig) -> LLMAdapter:
    """Create the value backend named by ``config.provider``."""

    provider = config.provider.strip().lower()
    if provider == "openai":
        if not config.api_key:
            raise ValueError("llm_config.api_key is required when provider='openai'")
        return OpenAICompatibleLLMAdapter(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
        )
    if provider == "noop":
        return NoopLLMAdapter()
    raise ValueError(
        f"Unsupported llm_config.provider '{config.provider}'. "
        "Supported providers: openai, noop."
    )


def build_value_generator(config: LLMConfig) -> LLMValueGenerator:
    """LLM-backed value generator for ``EntityDatabase(values=...)``."""
    return LLMValueGenerator(build_llm_adapter(config), config)
