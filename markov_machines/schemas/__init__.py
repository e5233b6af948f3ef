"""
Schemas - Executor Response Models

Defines the Pydantic models executors return to the run loop.
"""

from markov_machines.schemas.responses import (
    ExecutorResponse,
    StopReason,
    ToolCall,
    TransitionCall,
)

__all__ = [
    "ExecutorResponse",
    "StopReason",
    "ToolCall",
    "TransitionCall",
]
