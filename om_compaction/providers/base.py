from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class StopReason(str, Enum):
    STOP = "stop"
    LENGTH = "length"
    ERROR = "error"
    ABORTED = "aborted"
    TOOL_USE = "tool_use"


class GenerationResult(BaseModel):
    """Outcome of one summarization call."""
    text: str = ""
    stop_reason: StopReason = StopReason.STOP
    error_message: Optional[str] = None


class LLMProvider(ABC):
    """
    Abstract interface for LLM providers.
    Used by the Compactor to turn a prompt into an observation summary.

    Users can implement this to use ANY model. Providers never raise for
    model-side failures; they report them through `stop_reason`.
    """

    @abstractmethod
    async def agenerate(self, system_prompt: str, user_prompt: str, max_tokens: int) -> GenerationResult:
        """Async completion call."""
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model identifier string."""
        pass

    @property
    def provider_name(self) -> str:
        return "custom"

    @property
    def api_key(self) -> Optional[str]:
        """Credential for the active model; None disables generation."""
        return "local"

    @property
    def context_window(self) -> int:
        """Model context size in tokens, 0 when unknown."""
        return 0

    @property
    def model_ref(self) -> str:
        return f"{self.provider_name}/{self.model_name}"
