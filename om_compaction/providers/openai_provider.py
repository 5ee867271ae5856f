import logging
import os
from typing import Optional

from om_compaction.providers.base import GenerationResult, LLMProvider, StopReason

logger = logging.getLogger("om_compaction.providers.openai")

_FINISH_REASONS = {
    "stop": StopReason.STOP,
    "length": StopReason.LENGTH,
    "tool_calls": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
}


class OpenAIProvider(LLMProvider):
    """
    OpenAI provider using the official `openai` package.
    """

    def __init__(self, model: str = "gpt-4o-mini", api_key: str = None, client=None):
        self._model = model
        self._api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self._client = client

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def provider_name(self) -> str:
        return "openai"

    @property
    def api_key(self) -> Optional[str]:
        return self._api_key

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    def _build_messages(self, system_prompt: str, user_prompt: str) -> list[dict]:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})
        return messages

    async def agenerate(self, system_prompt: str, user_prompt: str, max_tokens: int) -> GenerationResult:
        from openai import OpenAIError

        try:
            response = await self._get_client().chat.completions.create(
                model=self._model,
                messages=self._build_messages(system_prompt, user_prompt),
                max_tokens=max_tokens,
            )
        except OpenAIError as e:
            logger.warning("OpenAI summarization call failed: %s", e)
            return GenerationResult(stop_reason=StopReason.ERROR, error_message=str(e))

        choice = response.choices[0]
        return GenerationResult(
            text=(choice.message.content or "").strip(),
            stop_reason=_FINISH_REASONS.get(choice.finish_reason, StopReason.STOP),
        )
