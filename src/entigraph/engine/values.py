"""Scalar value generation for synthesized entities.

``ValueGenerator`` implementations produce the text of generated string
fields and the natural-language placeholders used by drafts. The
``PlaceholderValueGenerator`` is deterministic and needs no network; the
``LLMValueGenerator`` asks an ``LLMAdapter`` and falls back to placeholders
whenever the model fails or answers with nothing.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Protocol
from typing import runtime_checkable

from entigraph.config import LLMConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# LLM abstraction
# ---------------------------------------------------------------------------


@runtime_checkable
class LLMAdapter(Protocol):
    """Protocol for LLM provider adapters.

    Concrete implementations live in ``entigraph.engine.llm_adapters``.
    Tests use a ``MockLLMAdapter``.
    """

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 0.2,
        max_tokens: int = 256,
        timeout_seconds: float = 30.0,
    ) -> str: ...


class LLMError(Exception):
    """Raised by LLM adapters when a call fails."""


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GenerationRequest:
    """What to generate, and the context available for it."""

    field_name: str
    type_name: str
    hint: str | None = None
    context: str | None = None
    parent_type: str | None = None
    parent_data: Mapping[str, Any] = field(default_factory=dict)


@runtime_checkable
class ValueGenerator(Protocol):
    """Produces generated field values and reference placeholders."""

    async def generate_value(self, request: GenerationRequest) -> str: ...

    async def describe_reference(self, request: GenerationRequest) -> str: ...


# ---------------------------------------------------------------------------
# Deterministic placeholders
# ---------------------------------------------------------------------------

NAME_FIELDS = frozenset({"name", "title", "label"})


class PlaceholderValueGenerator:
    """Deterministic values derived from field names, hints, and context."""

    async def generate_value(self, request: GenerationRequest) -> str:
        return self.render_value(request)

    async def describe_reference(self, request: GenerationRequest) -> str:
        return self.render_reference(request)

    @staticmethod
    def render_value(request: GenerationRequest) -> str:
        # Self-referential children inherit the parent's value
        if request.parent_type == request.type_name:
            inherited = request.parent_data.get(request.field_name)
            if isinstance(inherited, str) and inherited:
                return inherited

        hint = (request.hint or "").strip()
        context = (request.context or "").strip()
        if request.field_name in NAME_FIELDS:
            if hint:
                return hint
            if context:
                return f"{request.type_name} for {context}"
            return f"Generated {request.type_name}"
        if hint:
            return f"{request.field_name} for {hint}"
        if context:
            return f"{request.field_name} for {context}"
        return f"Generated {request.field_name} for {request.type_name}"

    @staticmethod
    def render_reference(request: GenerationRequest) -> str:
        hint = (request.hint or "").strip()
        if hint:
            return hint
        text = f"A {request.type_name.lower()} for {request.field_name}"
        context = (request.context or "").strip()
        if context:
            text += f" of {context}"
        return text


# ---------------------------------------------------------------------------
# LLM-backed generation
# ---------------------------------------------------------------------------

# Regex to strip Markdown code fences wrapping the answer
_CODE_FENCE_RE = re.compile(
    r"^\s*```(?:\w+)?\s*\n?(.*?)\n?\s*```\s*$",
    re.DOTALL,
)


def build_value_prompt(request: GenerationRequest) -> str:
    """Prompt asking the model for a single field value."""
    lines = [
        f"Generate the value of the field '{request.field_name}' for a new "
        f"'{request.type_name}' entity.",
    ]
    if request.hint:
        lines.append(f"Guidance: {request.hint}")
    if request.context:
        lines.append(f"Context: {request.context}")
    lines.append("Answer with the value only, no quotes and no explanation.")
    return "\n".join(lines)


def build_reference_prompt(request: GenerationRequest) -> str:
    """Prompt asking the model for a short description of a related entity."""
    lines = [
        f"Describe, in one short phrase, the '{request.type_name}' that the "
        f"field '{request.field_name}' should point to.",
    ]
    if request.hint:
        lines.append(f"Guidance: {request.hint}")
    if request.context:
        lines.append(f"Context: {request.context}")
    lines.append("Answer with the phrase only.")
    return "\n".join(lines)


def clean_completion(raw: str) -> str:
    """Strip code fences, surrounding quotes, and whitespace."""
    text = raw.strip()
    match = _CODE_FENCE_RE.match(text)
    if match:
        text = match.group(1).strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        text = text[1:-1].strip()
    return text


class LLMValueGenerator:
    """Generates values with an LLM, falling back to placeholders."""

    def __init__(
        self,
        llm: LLMAdapter,
        llm_config: LLMConfig | None = None,
        fallback: ValueGenerator | None = None,
    ) -> None:
        self._llm = llm
        self._llm_config = llm_config or LLMConfig()
        self._fallback = fallback or PlaceholderValueGenerator()

    async def generate_value(self, request: GenerationRequest) -> str:
        text = await self._complete(build_value_prompt(request))
        if text:
            return text
        return await self._fallback.generate_value(request)

    async def describe_reference(self, request: GenerationRequest) -> str:
        text = await self._complete(build_reference_prompt(request))
        if text:
            return text
        return await self._fallback.describe_reference(request)

    async def _complete(self, prompt: str) -> str:
        try:
            raw = await self._llm.complete(
                prompt,
                temperature=self._llm_config.temperature,
                max_tokens=self._llm_config.max_tokens,
                timeout_seconds=self._llm_config.timeout_seconds,
            )
        except LLMError as exc:
            logger.warning("LLM generation failed, using placeholder: %s", exc)
            return ""
        return clean_completion(raw)
