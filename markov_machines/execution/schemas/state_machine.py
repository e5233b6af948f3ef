"""
Transition Types - FSM State Transition Definitions

The three outcomes a transition can produce (MoveTo, Spawn, Cede), the helpers
transition functions use to build them, and the state machine vocabulary the
engine uses to classify what happened to the instance tree.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, List, Optional, Union

from ...domain.models import Node
from ...state.instance import Instance
from ...state.models import Message


class StateMachineTransition(Enum):
    """
    Strict State Machine terminology describing what happened to the tree.
    This decouples the Engine logic from how the result was produced (model
    transition call, command, or plain reply).
    """

    HOLD = auto()  # The leaf is unchanged.
    ADVANCE = auto()  # The leaf was replaced by a new node (MoveTo).
    PUSH = auto()  # A child frame was pushed beneath the leaf (Spawn).
    POP = auto()  # The leaf was popped back to its parent (Cede).


# ==============================================================================
# Transition Results
# ==============================================================================


NodeTarget = Union[Node, str]


@dataclass(frozen=True)
class MoveTo:
    """Replace the current frame with a new activation of `node`."""
    node: NodeTarget
    state: Any = None


@dataclass(frozen=True)
class Spawn:
    """Push a new frame for `node` as the child of the current one."""
    node: NodeTarget
    state: Any = None
    executor: Optional[str] = None


@dataclass(frozen=True)
class Cede:
    """
    Pop the current frame, handing `message` to the parent's next turn.

    `message` is either plain text or a list of messages that are appended
    to the conversation as they are.
    """
    message: Union[str, List[Message], None] = None


TransitionResult = Union[MoveTo, Spawn, Cede]


def move_to(node: NodeTarget, state: Any = None) -> MoveTo:
    return MoveTo(node=node, state=state)


def spawn(node: NodeTarget, state: Any = None, executor: Optional[str] = None) -> Spawn:
    return Spawn(node=node, state=state, executor=executor)


def cede(message: Union[str, List[Message], None] = None) -> Cede:
    return Cede(message=message)


def is_transition_result(value: Any) -> bool:
    return isinstance(value, (MoveTo, Spawn, Cede))


@dataclass
class TransitionOutcome:
    """
    The tree after a transition result was applied.

    `root` is None only when the root frame itself ceded (end of session).
    """

    transition_type: StateMachineTransition
    root: Optional[Instance]
    instance: Optional[Instance] = None  # the newly created frame (ADVANCE/PUSH)
    cede_message: Optional[str] = None
    cede_messages: List[Message] = field(default_factory=list)  # history entries for the parent
