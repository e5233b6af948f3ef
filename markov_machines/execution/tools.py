"""
Tool Execution.

Validates model-proposed arguments, invokes the tool handler with a capability
object (read the state, request a patch) and normalizes whatever comes back
into a ToolOutcome. Tool failures are data, not faults: invalid input and
handler exceptions both come back as `is_error` outcomes that the run loop
feeds to the model so it can correct itself.
"""

import inspect
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Mapping, Optional, Type

from pydantic import BaseModel

from ..domain.charter import Charter
from ..domain.models import ToolDefinition, ToolReply
from ..exceptions import InputValidationError
from ..state.instance import Instance
from ..state.merge import merge_state
from ..state.validation import validate_input

logger = logging.getLogger(__name__)


class ToolContext:
    """
    Capability handed to tool and command handlers.

    `state` is a private copy of the owner's current state; mutating it has no
    effect. `request_patch` deep-merges a partial update and validates it
    straight away, so an invalid patch raises inside the handler.
    """

    def __init__(
        self,
        state: BaseModel,
        schema: Type[BaseModel],
        owner: Optional[str] = None,
    ):
        self._state = state
        self._schema = schema
        self._owner = owner
        self.patched = False

    @property
    def state(self) -> BaseModel:
        return self._state.model_copy(deep=True)

    @property
    def current_state(self) -> BaseModel:
        return self._state

    def request_patch(self, patch: Mapping[str, Any]):
        self._state = merge_state(self._schema, self._state, patch, owner=self._owner)
        self.patched = True

    # Alias used by handlers written against the updateState vocabulary
    update_state = request_patch


@dataclass
class ToolOutcome:
    """
    Attributes:
        result: Text fed back to the model.
        is_error: The call failed; nothing it requested was committed.
        user_message: Text for the user, delivered apart from `result`.
        state: The owner's new state when the call patched it, else None.
    """
    result: str
    is_error: bool = False
    user_message: Optional[str] = None
    state: Optional[BaseModel] = None


def normalize_result(output: Any) -> str:
    if isinstance(output, str):
        return output
    if isinstance(output, BaseModel):
        return output.model_dump_json()
    if output is None:
        return "OK"
    return json.dumps(output, default=str)


async def invoke_handler(handler, *args) -> Any:
    result = handler(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


async def execute_tool(
    tool: ToolDefinition,
    raw_input: Any,
    state: BaseModel,
    schema: Type[BaseModel],
    owner: Optional[str] = None,
) -> ToolOutcome:
    """
    Run one tool call against `state`.

    The handler is never invoked when `raw_input` fails the tool's input
    schema. Patches requested by a call that ends in an error are discarded.
    """
    try:
        typed_input = validate_input(tool.input_schema, raw_input)
    except InputValidationError as e:
        logger.warning(f"Invalid input for tool '{tool.name}': {e.details}")
        return ToolOutcome(result=f"Invalid tool input: {e.details}", is_error=True)

    ctx = ToolContext(state, schema, owner=owner)
    try:
        output = await invoke_handler(tool.execute, typed_input, ctx)
    except Exception as e:
        logger.warning(f"Tool '{tool.name}' failed: {e}")
        return ToolOutcome(result=f"Tool execution error: {e}", is_error=True)

    new_state = ctx.current_state if ctx.patched else None
    if isinstance(output, ToolReply):
        return ToolOutcome(
            result=output.llm_message,
            user_message=output.user_message,
            state=new_state,
        )
    return ToolOutcome(result=normalize_result(output), state=new_state)


# ==============================================================================
# Resolution
# ==============================================================================


class ToolScope(str, Enum):
    NODE = "node"  # tool of the leaf node; operates on the leaf state
    ANCESTOR = "ancestor"  # tool of an ancestor node; operates on that ancestor's state
    CHARTER = "charter"  # charter tool; operates on the leaf state
    PACK = "pack"  # pack tool; operates on the pack's state


@dataclass
class ResolvedTool:
    tool: ToolDefinition
    scope: ToolScope
    instance_id: Optional[str] = None  # owner frame for NODE / ANCESTOR / CHARTER
    pack_name: Optional[str] = None


def resolve_tool(charter: Charter, path: List[Instance], name: str) -> Optional[ResolvedTool]:
    """
    Find the tool `name` as seen from the leaf at the end of `path`.

    Closest definition wins: the leaf's own tools, then ancestors nearest
    first, then charter tools, then the tools of the leaf's packs.
    """
    leaf = path[-1]
    if name in leaf.node.tools:
        return ResolvedTool(leaf.node.tools[name], ToolScope.NODE, instance_id=leaf.id)
    for ancestor in reversed(path[:-1]):
        if name in ancestor.node.tools:
            return ResolvedTool(ancestor.node.tools[name], ToolScope.ANCESTOR, instance_id=ancestor.id)
    if name in charter.tools:
        return ResolvedTool(charter.tools[name], ToolScope.CHARTER, instance_id=leaf.id)
    for pack in leaf.node.packs:
        if name in pack.tools:
            return ResolvedTool(pack.tools[name], ToolScope.PACK, pack_name=pack.name)
    return None
