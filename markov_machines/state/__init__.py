"""
State Layer - Runtime Data Models

Defines the runtime records (messages, steps, portable snapshots) and the
validation and merge primitives every state write goes through. The instance
tree, the Machine and the serializer live in `state.instance`,
`state.machine` and `state.serialization`.
"""

from markov_machines.state.merge import deep_merge, merge_state
from markov_machines.state.models import (
    Command,
    CommandExecutionResult,
    CommandInfo,
    Message,
    MessageKind,
    PortableInstance,
    Step,
    ToolCallRecord,
    YieldReason,
)
from markov_machines.state.validation import validate_input, validate_state

__all__ = [
    "Command",
    "CommandExecutionResult",
    "CommandInfo",
    "Message",
    "MessageKind",
    "PortableInstance",
    "Step",
    "ToolCallRecord",
    "YieldReason",
    "deep_merge",
    "merge_state",
    "validate_input",
    "validate_state",
]
