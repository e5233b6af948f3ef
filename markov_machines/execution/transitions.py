"""
Transition Execution.

Resolves a named transition for a node, runs it to obtain exactly one
TransitionResult, and applies that result to the instance tree:

    MoveTo -> ADVANCE: the target frame is replaced; ancestors are kept.
    Spawn  -> PUSH:    a new frame becomes the target's child.
    Cede   -> POP:     the target frame is removed; its parent becomes the leaf.

Applying never mutates the input tree. A missing or invalid state raises
before anything is built, so the caller still holds the untouched tree.
"""

import logging
from typing import Any, List, Optional, Union

from ..domain.charter import Charter
from ..domain.models import ArgumentTransition, TransitionContext
from ..exceptions import InputValidationError, StructuralError, TransitionError
from ..state.instance import (
    Instance,
    create_instance,
    find_instance,
    get_active_instance,
    remove_instance,
    replace_instance,
)
from ..state.models import Message, MessageKind
from ..state.validation import validate_input
from .schemas.state_machine import (
    Cede,
    MoveTo,
    Spawn,
    StateMachineTransition,
    TransitionOutcome,
    TransitionResult,
    is_transition_result,
)
from .tools import invoke_handler

logger = logging.getLogger(__name__)


def _cede_messages(message: Union[str, List[Message], None]) -> List[Message]:
    """History entries a cede hands to the parent, all marked as cede results."""
    if message is None:
        return []
    if isinstance(message, str):
        return [Message(role="user", content=message, kind=MessageKind.CEDE)] if message else []
    for msg in message:
        if msg.role == "tool":
            raise StructuralError("A cede cannot hand back tool messages")
    return [msg.model_copy(update={"kind": MessageKind.CEDE, "tool_calls": []}) for msg in message]


async def execute_transition(
    charter: Charter,
    instance: Instance,
    name: str,
    raw_args: Any = None,
    reason: str = "",
) -> TransitionResult:
    """
    Run the transition `name` visible from `instance` against its state.

    Raises:
        TransitionError: unknown transition, invalid arguments, or the
            handler raised. Recoverable; the model may try again.
        StructuralError: the handler returned something other than a
            MoveTo, Spawn or Cede.
    """
    transition = charter.resolve_transition(instance.node, name)
    if transition is None:
        available = ", ".join(sorted(charter.available_transitions(instance.node))) or "none"
        raise TransitionError(f"Unknown transition \"{name}\". Available transitions: {available}")

    args = None
    if isinstance(transition, ArgumentTransition):
        try:
            args = validate_input(transition.arguments, raw_args)
        except InputValidationError as e:
            raise TransitionError(f"Invalid arguments for transition \"{name}\": {e.details}") from e

    ctx = TransitionContext(args=args, reason=reason)
    try:
        result = await invoke_handler(transition.execute, instance.state.model_copy(deep=True), ctx)
    except StructuralError:
        raise
    except Exception as e:
        raise TransitionError(f"Transition \"{name}\" failed: {e}") from e

    if not is_transition_result(result):
        raise StructuralError(
            f"Transition \"{name}\" of node \"{instance.node.id}\" returned "
            f"{type(result).__name__}; expected MoveTo, Spawn or Cede"
        )
    return result


def apply_transition_result(
    charter: Charter,
    root: Instance,
    result: TransitionResult,
    target_id: Optional[str] = None,
) -> TransitionOutcome:
    """
    Apply `result` to the frame `target_id` (the leaf by default).

    Returns a TransitionOutcome holding the new root. Raises on any
    structural problem (unknown node or executor, missing or invalid state).
    """
    target = find_instance(root, target_id) if target_id else get_active_instance(root)
    if target is None:
        raise StructuralError(f"Instance \"{target_id}\" is not part of this tree")

    if isinstance(result, MoveTo):
        node = charter.resolve_node(result.node)
        new_instance = create_instance(node, result.state)
        logger.info(f"MoveTo: '{target.node.id}' -> '{node.id}'")
        return TransitionOutcome(
            transition_type=StateMachineTransition.ADVANCE,
            root=replace_instance(root, target.id, new_instance),
            instance=new_instance,
        )

    if isinstance(result, Spawn):
        node = charter.resolve_node(result.node)
        if result.executor is not None:
            charter.get_executor(result.executor, node_id=node.id)
        new_instance = create_instance(node, result.state, executor=result.executor)
        logger.info(f"Spawn: '{node.id}' beneath '{target.node.id}'")
        return TransitionOutcome(
            transition_type=StateMachineTransition.PUSH,
            root=replace_instance(root, target.id, target.with_child(new_instance)),
            instance=new_instance,
        )

    if isinstance(result, Cede):
        messages = _cede_messages(result.message)
        new_root = remove_instance(root, target.id)
        if new_root is None:
            logger.info(f"Cede from root '{target.node.id}': session finished")
        else:
            logger.info(f"Cede: '{target.node.id}' returned to its parent")
        return TransitionOutcome(
            transition_type=StateMachineTransition.POP,
            root=new_root,
            cede_message="\n".join(msg.content for msg in messages if msg.content) or None,
            cede_messages=messages,
        )

    raise StructuralError(f"Unsupported transition result: {type(result).__name__}")
