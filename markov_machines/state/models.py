"""
State Layer - Runtime Data Models

This module defines the runtime records produced while a machine runs:
conversation messages, the portable (durable) form of an instance tree, and
the Step record appended to history after every run-loop iteration.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class MessageKind(str, Enum):
    """
    Tags for messages that are not plain conversation turns.

    CEDE: result handed back by a child frame when it ceded.
    USER_REPLY: text a tool addressed to the user directly; hidden from the model.
    COMMAND: record of a user-invoked command.
    """
    CEDE = "cede"
    USER_REPLY = "user_reply"
    COMMAND = "command"


class ToolCallRecord(BaseModel):
    """A tool invocation proposed by the model, as stored in history."""
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class Message(BaseModel):
    role: Literal["user", "assistant", "tool"]
    content: str = ""
    tool_calls: List[ToolCallRecord] = Field(default_factory=list)

    # Only for role="tool": which call this message answers
    tool_call_id: Optional[str] = None
    is_error: bool = False

    kind: Optional[MessageKind] = None


class PortableInstance(BaseModel):
    """
    Durable form of an instance tree.

    Nodes are referenced by identifier only; the state is the plain JSON value
    of the node's state model. Children nest recursively.
    """
    node: str
    state: Dict[str, Any] = Field(default_factory=dict)
    child: Optional["PortableInstance"] = None
    id: Optional[str] = None
    executor: Optional[str] = None

    def to_portable_dict(self) -> Dict[str, Any]:
        """Dict form with unset optionals omitted: `{node, state, child?}`."""
        data: Dict[str, Any] = {"node": self.node, "state": self.state}
        if self.id is not None:
            data["id"] = self.id
        if self.executor is not None:
            data["executor"] = self.executor
        if self.child is not None:
            data["child"] = self.child.to_portable_dict()
        return data


PortableInstance.model_rebuild()


class YieldReason(str, Enum):
    """Why the run loop finished an iteration."""
    END_TURN = "end_turn"  # Plain text reply, waiting for the user
    TOOL_USE = "tool_use"  # Tool results must go back to the model
    MAX_TOKENS = "max_tokens"
    TRANSITION = "transition"  # MoveTo or Spawn
    CEDE = "cede"  # Child frame returned to its parent
    END_SESSION = "end_session"  # Root frame ceded; nothing left to run
    COMMAND = "command"


class Step(BaseModel):
    """
    One durable record of a single run-loop iteration. Immutable once
    appended to the machine's history.
    """
    step_number: int
    instance_id: str
    node_id: str
    yield_reason: YieldReason
    response: str = ""
    messages: List[Message] = Field(default_factory=list)
    instance: PortableInstance
    pack_states: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    user_messages: List[str] = Field(default_factory=list)
    cede_message: Optional[str] = None
    command_result: Optional["CommandExecutionResult"] = None
    done: bool = False

    model_config = {"frozen": True}


class Command(BaseModel):
    """User-invoked command, passed to the run loop instead of text."""
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)
    instance_id: Optional[str] = None


class CommandInfo(BaseModel):
    """Description of a command available on the current tree."""
    name: str
    description: str
    input_schema: Dict[str, Any]
    instance_id: str
    source: str  # node id or pack name


class CommandExecutionResult(BaseModel):
    success: bool
    value: Any = None
    error: Optional[str] = None
    user_message: Optional[str] = None


Step.model_rebuild()
