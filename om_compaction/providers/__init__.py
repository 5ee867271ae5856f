from om_compaction.providers.base import GenerationResult, LLMProvider, StopReason
from om_compaction.providers.openai_provider import OpenAIProvider
from om_compaction.providers.anthropic_provider import AnthropicProvider

__all__ = [
    "LLMProvider",
    "GenerationResult",
    "StopReason",
    "OpenAIProvider",
    "AnthropicProvider",
]
