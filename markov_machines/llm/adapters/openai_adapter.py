import json
import logging
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from ..interface import LLMProvider
from ...config import settings
from ...schemas.responses import ExecutorResponse, StopReason, ToolCall

logger = logging.getLogger(__name__)

_STOP_REASONS = {
    "stop": StopReason.END_TURN,
    "tool_calls": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
    "length": StopReason.MAX_TOKENS,
}


class OpenAIAdapter(LLMProvider):
    def __init__(self, api_key: Optional[str], model_name: str = settings.OPENAI_MODEL):
        self.client = AsyncOpenAI(api_key=api_key)
        self.model_name = model_name

    async def generate_with_tools(
        self,
        messages: List[dict],
        tools: List[Dict[str, Any]],
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
    ) -> ExecutorResponse:
        # This is where the specific OpenAI implementation lives.
        # If OpenAI changes their API tomorrow, we ONLY change this file.
        request: Dict[str, Any] = {
            "model": self.model_name,
            "messages": messages,
            "temperature": temperature,
        }
        if tools:
            request["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool["name"],
                        "description": tool["description"],
                        "parameters": tool["input_schema"],
                    },
                }
                for tool in tools
            ]
        if max_tokens:
            request["max_tokens"] = max_tokens

        completion = await self.client.chat.completions.create(**request)

        # We unwrap the specific OpenAI response structure here
        choice = completion.choices[0]
        tool_calls = [
            ToolCall(
                id=call.id,
                name=call.function.name,
                input=self._parse_arguments(call.function.name, call.function.arguments),
            )
            for call in (choice.message.tool_calls or [])
        ]
        stop_reason = _STOP_REASONS.get(choice.finish_reason, StopReason.END_TURN)
        if tool_calls and stop_reason == StopReason.END_TURN:
            stop_reason = StopReason.TOOL_USE

        return ExecutorResponse(
            text=choice.message.content or "",
            tool_calls=tool_calls,
            stop_reason=stop_reason,
        )

    @staticmethod
    def _parse_arguments(name: str, arguments: Optional[str]) -> Dict[str, Any]:
        if not arguments:
            return {}
        try:
            parsed = json.loads(arguments)
        except json.JSONDecodeError:
            # Left for input validation to reject, so the model sees the error
            logger.warning(f"Malformed arguments for tool '{name}': {arguments!r}")
            return {"_raw": arguments}
        return parsed if isinstance(parsed, dict) else {"_value": parsed}
