"""
Markov Machines

A runtime for multi-turn LLM conversations modeled as a hierarchical,
schema-validated state machine: nodes with typed state, tools and
transitions, composed into a call stack of sub-dialogs.
"""

from markov_machines.domain import (
    ArgumentTransition,
    Charter,
    CodeTransition,
    CommandDefinition,
    CommandValue,
    Node,
    Pack,
    ToolDefinition,
    ToolReply,
    TransitionContext,
)
from markov_machines.state import (
    Command,
    CommandExecutionResult,
    Message,
    PortableInstance,
    Step,
    YieldReason,
    deep_merge,
    merge_state,
    validate_state,
)
from markov_machines.state.instance import Instance, create_instance
from markov_machines.state.machine import Machine
from markov_machines.state.serialization import (
    SerializedMachine,
    deserialize_instance,
    deserialize_machine,
    serialize_instance,
    serialize_machine,
)
from markov_machines.execution.schemas.state_machine import Cede, MoveTo, Spawn, cede, move_to, spawn
from markov_machines.execution.commands import get_available_commands, run_command
from markov_machines.execution import (
    ExecutionContext,
    Executor,
    MachineEngine,
    StandardExecutor,
    run_machine,
    run_machine_to_completion,
)
from markov_machines.schemas import ExecutorResponse, StopReason, ToolCall, TransitionCall

__all__ = [
    # Domain Layer
    "ArgumentTransition",
    "Charter",
    "CodeTransition",
    "CommandDefinition",
    "CommandValue",
    "Node",
    "Pack",
    "ToolDefinition",
    "ToolReply",
    "TransitionContext",
    # State Layer
    "Command",
    "CommandExecutionResult",
    "Instance",
    "Machine",
    "Message",
    "PortableInstance",
    "SerializedMachine",
    "Step",
    "YieldReason",
    "create_instance",
    "deep_merge",
    "deserialize_instance",
    "deserialize_machine",
    "merge_state",
    "serialize_instance",
    "serialize_machine",
    "validate_state",
    # Transition results
    "Cede",
    "MoveTo",
    "Spawn",
    "cede",
    "move_to",
    "spawn",
    # Schemas
    "ExecutorResponse",
    "StopReason",
    "ToolCall",
    "TransitionCall",
    # Execution Layer
    "ExecutionContext",
    "Executor",
    "MachineEngine",
    "StandardExecutor",
    "get_available_commands",
    "run_command",
    "run_machine",
    "run_machine_to_completion",
]
