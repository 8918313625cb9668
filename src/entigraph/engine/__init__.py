"""Engine domain: generation, resolution, cascade and draft pipelines."""

from entigraph.engine.cascade import CascadeGenerator
from entigraph.engine.cascade import CascadeOptions
from entigraph.engine.cascade import CascadeResult
from entigraph.engine.drafts import DraftError
from entigraph.engine.drafts import DraftPipeline
from entigraph.engine.generation import EntityGenerator
from entigraph.engine.llm_adapters import build_llm_adapter
from entigraph.engine.llm_adapters import build_value_generator
from entigraph.engine.llm_adapters import NoopLLMAdapter
from entigraph.engine.llm_adapters import OpenAICompatibleLLMAdapter
from entigraph.engine.resolution import RelationshipResolver
from entigraph.engine.resolution import ResolutionResult
from entigraph.engine.values import GenerationRequest
from entigraph.engine.values import LLMAdapter
from entigraph.engine.values import LLMError
from entigraph.engine.values import LLMValueGenerator
from entigraph.engine.values import PlaceholderValueGenerator
from entigraph.engine.values import ValueGenerator

__all__ = [
    "CascadeGenerator",
    "CascadeOptions",
    "CascadeResult",
    "DraftError",
    "DraftPipeline",
    "EntityGenerator",
    "GenerationRequest",
    "LLMAdapter",
    "LLMError",
    "LLMValueGenerator",
    "NoopLLMAdapter",
    "OpenAICompatibleLLMAdapter",
    "PlaceholderValueGenerator",
    "RelationshipResolver",
    "ResolutionResult",
    "ValueGenerator",
    "build_llm_adapter",
    "build_value_generator",
]
