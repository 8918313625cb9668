"""Application configuration dataclasses.

Frozen dataclasses with sensible defaults for each subsystem.
No env-var loading or YAML parsing: plain defaults that can be
overridden at construction time.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ResolutionConfig:
    """Thresholds and limits for relationship resolution."""

    # Used when neither the field nor the entity declares a threshold
    default_fuzzy_threshold: float = 0.75
    # Minimum score accepted when resolving fuzzy draft references
    draft_min_score: float = 0.5
    # Maximum matches collected by fuzzy-backward array fields
    backward_match_limit: int = 10
    # Extra levels of required exact-forward relations generated with a child
    nested_generation_depth: int = 1


@dataclass(frozen=True)
class CascadeConfig:
    """Defaults for recursive cascade generation."""

    default_max_depth: int = 3


@dataclass(frozen=True)
class LLMConfig:
    """LLM provider settings used by the value generator."""

    provider: str = "openai"
    model: str = "gpt-4"
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    temperature: float = 0.2
    max_tokens: int = 256
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class AuditConfig:
    """Settings for the JSONL audit logger."""

    file_path: str = "entigraph_audit.jsonl"
    enabled: bool = True
