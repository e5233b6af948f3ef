"""
Domain Layer - Static Definitions

This module defines the static building blocks of a charter: Nodes (one
conversational mode each), the Tools and Commands they expose, reusable Packs,
and the two kinds of Transitions. These are plain dataclasses built once at
import time and never mutated afterwards.
"""

from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Type,
    Union,
)

from pydantic import BaseModel

from ..state.validation import validate_state

if TYPE_CHECKING:
    from ..execution.schemas.state_machine import TransitionResult

DEFAULT_EXECUTOR = "standard"


# ==============================================================================
# Tools
# ==============================================================================


@dataclass(frozen=True)
class ToolReply:
    """
    Dual-channel tool return value.

    Attributes:
        llm_message: Fed back to the model as the tool result.
        user_message: Surfaced to the user verbatim; the model never
            reprocesses it.
    """
    llm_message: str
    user_message: str


@dataclass(frozen=True)
class ToolDefinition:
    """
    A model-callable tool.

    Tools are routed through the inference capability: the model proposes the
    call, the run loop validates the arguments against `input_schema` and
    invokes `execute(input, ctx)`. `execute` may be a coroutine function.
    The return value is text (or anything JSON-encodable) or a ToolReply.
    """
    name: str
    description: str
    input_schema: Type[BaseModel]
    execute: Callable[..., Any]


# ==============================================================================
# Commands
# ==============================================================================


@dataclass(frozen=True)
class CommandValue:
    """Direct value returned by a command."""
    value: Any = None


@dataclass(frozen=True)
class CommandDefinition:
    """
    A user-callable operation that bypasses inference entirely.

    Used for deterministic operations (health checks, fixed replies, direct
    state edits). `execute(input, ctx)` returns a CommandValue, a ToolReply,
    a transition result (MoveTo/Spawn/Cede) or None.
    """
    name: str
    description: str
    input_schema: Type[BaseModel]
    execute: Callable[..., Any]


# ==============================================================================
# Packs
# ==============================================================================


@dataclass(frozen=True, eq=False)
class Pack:
    """
    Reusable, charter-global module of tools and commands with its own
    singleton state, shared by every node that lists the pack.
    """
    name: str
    description: str
    state_schema: Type[BaseModel]
    tools: Dict[str, ToolDefinition] = field(default_factory=dict)
    commands: Dict[str, CommandDefinition] = field(default_factory=dict)
    initial_state: Optional[Any] = None

    def __post_init__(self):
        _check_names("Pack tool", self.tools)
        _check_names("Pack command", self.commands)
        if self.initial_state is not None:
            object.__setattr__(
                self,
                "initial_state",
                validate_state(self.state_schema, self.initial_state, owner=self.name),
            )


# ==============================================================================
# Transitions
# ==============================================================================


@dataclass(frozen=True)
class TransitionContext:
    """Call context handed to a transition's execute function."""
    args: Any = None
    reason: str = ""


TransitionFn = Callable[
    [Any, TransitionContext],
    Union["TransitionResult", Awaitable["TransitionResult"]],
]


@dataclass(frozen=True)
class CodeTransition:
    """
    Transition with arbitrary logic and no argument contract. The model picks
    it by name through the generic `transition` tool.
    """
    description: str
    execute: TransitionFn


@dataclass(frozen=True)
class ArgumentTransition:
    """
    Transition that declares an argument schema. The model must supply
    arguments satisfying `arguments`; they reach `execute` as the typed model
    in `ctx.args`.
    """
    description: str
    arguments: Type[BaseModel]
    execute: TransitionFn


Transition = Union[CodeTransition, ArgumentTransition]


# ==============================================================================
# Node
# ==============================================================================


@dataclass(frozen=True, eq=False)
class Node:
    """
    One conversational mode.

    Identity is by reference: two nodes with identical fields are still
    different nodes. The charter registers each node under its `id`.

    Attributes:
        id: Unique identifier within the charter (used in snapshots).
        instructions: System instructions for the agent in this mode.
        state_schema: Pydantic model every state value must satisfy.
        tools: Node-local tools, keyed by tool name.
        transitions: Node-local transitions, keyed by transition name. A
            string value refers to a charter transition by name.
        commands: Node-local commands, keyed by command name.
        packs: Packs whose tools/commands are available in this node.
        initial_state: Default state used when MoveTo/Spawn give none.
        executor: Name of the executor (in the charter) that runs this node.
    """
    id: str
    instructions: str
    state_schema: Type[BaseModel]
    tools: Dict[str, ToolDefinition] = field(default_factory=dict)
    transitions: Dict[str, Union[Transition, str]] = field(default_factory=dict)
    commands: Dict[str, CommandDefinition] = field(default_factory=dict)
    packs: List[Pack] = field(default_factory=list)
    initial_state: Optional[Any] = None
    executor: str = DEFAULT_EXECUTOR

    def __post_init__(self):
        _check_names("Node tool", self.tools)
        _check_names("Node command", self.commands)
        if self.initial_state is not None:
            object.__setattr__(
                self,
                "initial_state",
                validate_state(self.state_schema, self.initial_state, owner=self.id),
            )

    def __repr__(self) -> str:
        return f"Node(id={self.id!r})"


def _check_names(kind: str, definitions: Dict[str, Any]):
    for key, definition in definitions.items():
        if definition.name != key:
            raise ValueError(
                f"{kind} name mismatch: key \"{key}\" does not match name \"{definition.name}\""
            )
