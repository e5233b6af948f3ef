"""
Schemas - Executor Response Models

This module defines the Pydantic models an executor returns to the run loop.
They are the contract between the pluggable inference capability and the
engine: plain text, zero or more tool invocations (name + raw arguments) and
at most one transition invocation.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class StopReason(str, Enum):
    """
    Why the executor stopped generating.

    END_TURN: The model replied and is waiting for the user.
    TOOL_USE: The model requested tools (or a transition).
    MAX_TOKENS: The response was cut off by the token limit.
    """
    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"


class ToolCall(BaseModel):
    id: str
    name: str = Field(..., description="Name of the tool to invoke.")
    input: Dict[str, Any] = Field(
        default_factory=dict,
        description="Raw, unvalidated arguments as produced by the model.",
    )


class TransitionCall(BaseModel):
    """A request to take one named transition."""
    id: str
    name: str
    reason: str = ""
    args: Dict[str, Any] = Field(default_factory=dict)


class ExecutorResponse(BaseModel):
    text: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    transition: Optional[TransitionCall] = None
    stop_reason: StopReason = StopReason.END_TURN
