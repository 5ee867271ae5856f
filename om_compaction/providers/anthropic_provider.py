import logging
import os
from typing import Optional

from om_compaction.providers.base import GenerationResult, LLMProvider, StopReason

logger = logging.getLogger("om_compaction.providers.anthropic")

_STOP_REASONS = {
    "end_turn": StopReason.STOP,
    "stop_sequence": StopReason.STOP,
    "max_tokens": StopReason.LENGTH,
    "tool_use": StopReason.TOOL_USE,
}


class AnthropicProvider(LLMProvider):
    """
    Anthropic provider using the official `anthropic` package.
    """

    def __init__(self, model: str = "claude-3-haiku-20240307", api_key: str = None, client=None):
        self._model = model
        self._api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        self._client = client

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def provider_name(self) -> str:
        return "anthropic"

    @property
    def api_key(self) -> Optional[str]:
        return self._api_key

    def _get_client(self):
        if self._client is None:
            from anthropic import AsyncAnthropic
            self._client = AsyncAnthropic(api_key=self._api_key)
        return self._client

    async def agenerate(self, system_prompt: str, user_prompt: str, max_tokens: int) -> GenerationResult:
        from anthropic import AnthropicError

        try:
            response = await self._get_client().messages.create(
                model=self._model,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
                max_tokens=max_tokens,
            )
        except AnthropicError as e:
            logger.warning("Anthropic summarization call failed: %s", e)
            return GenerationResult(stop_reason=StopReason.ERROR, error_message=str(e))

        text = "\n".join(block.text for block in response.content if block.type == "text")
        return GenerationResult(
            text=text.strip(),
            stop_reason=_STOP_REASONS.get(response.stop_reason, StopReason.STOP),
        )
