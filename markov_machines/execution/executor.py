"""
Executor - Inference Capability Layer

This module defines the Executor contract the run loop talks to, the
ExecutionContext it hands over, and the StandardExecutor, a stateless wrapper
that turns a context into an LLM call through a pluggable LLMProvider.

Executors are named in the charter; each node (or spawned frame) picks one by
name. Anything that can turn a context into an ExecutorResponse qualifies: an
LLM, a voice transport, or a scripted fake in tests.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from pydantic import BaseModel

from ..config import settings
from ..llm.interface import LLMProvider
from ..schemas.responses import ExecutorResponse, ToolCall, TransitionCall
from ..state.instance import Instance
from ..state.models import Message, MessageKind
from .tool_definitions import TRANSITION_TOOL, TRANSITION_TOOL_PREFIX, ToolSpec, is_transition_tool

logger = logging.getLogger(__name__)


@dataclass
class ExecutionContext:
    """
    Everything an executor needs for one iteration.

    Attributes:
        instance: The active (leaf) frame.
        ancestors: Frames above the leaf, root first.
        system_prompt: Rendered instructions for the leaf.
        tools: Tool definitions offered to the model.
        messages: Conversation so far, including this turn's pending input.
        pack_states: Current state of every pack.
        step_number: 1-based iteration counter within the current run.
        max_steps: Step limit of the current run.
    """
    instance: Instance
    ancestors: List[Instance]
    system_prompt: str
    tools: List[ToolSpec]
    messages: List[Message]
    pack_states: Dict[str, BaseModel]
    step_number: int
    max_steps: int

    @property
    def node(self):
        return self.instance.node

    @property
    def state(self) -> BaseModel:
        return self.instance.state


class Executor(ABC):
    @abstractmethod
    async def run(self, context: ExecutionContext) -> ExecutorResponse:
        """
        Produce a response for `context`. May raise on transport failure or
        timeout; the run loop then discards the iteration.
        """
        pass


class StandardExecutor(Executor):
    # 1. DEPENDENCY INJECTION: We ask for the generic Provider
    def __init__(
        self,
        llm_provider: LLMProvider,
        temperature: float = settings.LLM_TEMPERATURE,
        max_tokens: Optional[int] = settings.MAX_TOKENS,
    ):
        self.llm = llm_provider
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def run(self, context: ExecutionContext) -> ExecutorResponse:
        # 1. Prepare Messages (System + History)
        messages = [{"role": "system", "content": context.system_prompt}]
        messages.extend(to_chat_messages(context.messages))

        # 2. Call LLM with Tools
        response = await self.llm.generate_with_tools(
            messages=messages,
            tools=context.tools,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        logger.debug(
            f"Executor response for node {context.node.id}: "
            f"{len(response.tool_calls)} tool calls, stop={response.stop_reason.value}"
        )

        # 3. Lift the first transition call out of the tool calls
        return extract_transition(response)


def extract_transition(response: ExecutorResponse) -> ExecutorResponse:
    """
    Move the first `transition`/`transition_<name>` call into
    `response.transition`. Later transition calls stay in `tool_calls`, where
    the run loop rejects them.
    """
    if response.transition is not None:
        return response

    remaining: List[ToolCall] = []
    transition: Optional[TransitionCall] = None
    for call in response.tool_calls:
        if transition is None and is_transition_tool(call.name):
            transition = parse_transition_call(call)
        else:
            remaining.append(call)

    return response.model_copy(update={"tool_calls": remaining, "transition": transition})


def parse_transition_call(call: ToolCall) -> TransitionCall:
    args = dict(call.input)
    reason = str(args.pop("reason", "") or "")
    if call.name == TRANSITION_TOOL:
        return TransitionCall(id=call.id, name=str(args.get("to", "")), reason=reason)
    return TransitionCall(
        id=call.id,
        name=call.name[len(TRANSITION_TOOL_PREFIX):],
        reason=reason,
        args=args,
    )


def to_chat_messages(history: List[Message]) -> List[dict]:
    """Convert stored messages to chat-completion format."""
    chat = []
    for msg in history:
        if msg.kind in (MessageKind.USER_REPLY, MessageKind.COMMAND):
            continue

        if msg.role == "tool":
            chat.append({"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content})
        elif msg.role == "assistant" and msg.tool_calls:
            chat.append(
                {
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": json.dumps(call.input)},
                        }
                        for call in msg.tool_calls
                    ],
                }
            )
        elif msg.kind == MessageKind.CEDE:
            chat.append({"role": "user", "content": f"[Sub-task result] {msg.content}"})
        else:
            chat.append({"role": msg.role, "content": msg.content})
    return chat
