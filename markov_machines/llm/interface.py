from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..schemas.responses import ExecutorResponse


class LLMProvider(ABC):
    """
    Abstract Base Class interface that defines the contract for any LLM provider
    (OpenAI, Anthropic, Local LLaMA, etc.)
    """

    @abstractmethod
    async def generate_with_tools(
        self,
        messages: List[dict],
        tools: List[Dict[str, Any]],
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
    ) -> ExecutorResponse:
        """
        Generates a reply from chat-format `messages`, letting the model call
        any of `tools` (`{name, description, input_schema}` dicts).

        Every tool call is returned in `tool_calls`; the caller decides which
        of them are transitions.
        """
        pass
