"""
Command Execution.

Commands are user-invoked operations that bypass inference entirely: no
executor call, no model round trip. They use the same input validation and
capability context as tools and may return a direct value, a dual-channel
ToolReply, or a transition result that is applied to the tree immediately.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from ..domain.charter import Charter
from ..domain.models import CommandDefinition, CommandValue, ToolReply
from ..exceptions import InputValidationError, MachineFinishedError, StateValidationError, StructuralError
from ..state.instance import Instance, find_instance, get_active_instance, get_instance_path, update_instance_state
from ..state.machine import Machine
from ..state.models import Command, CommandExecutionResult, CommandInfo, Message, MessageKind
from ..state.validation import validate_input
from .schemas.state_machine import StateMachineTransition, TransitionOutcome, is_transition_result
from .tools import ToolContext, invoke_handler, normalize_result
from .transitions import apply_transition_result

logger = logging.getLogger(__name__)


@dataclass
class CommandEffects:
    """Everything a command produced, not yet committed."""
    result: CommandExecutionResult
    root: Optional[Instance]
    pack_states: Dict[str, BaseModel]
    messages: List[Message] = field(default_factory=list)
    transition: Optional[TransitionOutcome] = None


def get_available_commands(machine: Machine) -> List[CommandInfo]:
    """Commands of every frame in the tree (and their packs), leaf first."""
    commands: List[CommandInfo] = []
    for instance in reversed(get_instance_path(machine.instance)):
        for command in instance.node.commands.values():
            commands.append(_describe(command, instance.id, instance.node.id))
        for pack in instance.node.packs:
            for command in pack.commands.values():
                commands.append(_describe(command, instance.id, pack.name))
    return commands


def _describe(command: CommandDefinition, instance_id: str, source: str) -> CommandInfo:
    return CommandInfo(
        name=command.name,
        description=command.description,
        input_schema=command.input_schema.model_json_schema(),
        instance_id=instance_id,
        source=source,
    )


def _failure(error: str, root: Optional[Instance], pack_states: Dict[str, BaseModel]) -> CommandEffects:
    logger.warning(f"Command failed: {error}")
    return CommandEffects(
        result=CommandExecutionResult(success=False, error=error),
        root=root,
        pack_states=pack_states,
    )


async def execute_command(
    charter: Charter,
    root: Instance,
    pack_states: Dict[str, BaseModel],
    command: Command,
) -> CommandEffects:
    """
    Run `command` against the frame it targets (the leaf by default).

    Node commands are searched before the commands of the node's packs.
    Input or handler failures come back as an unsuccessful result; structural
    failures while applying a returned transition are raised.
    """
    target = find_instance(root, command.instance_id) if command.instance_id else get_active_instance(root)
    if target is None:
        return _failure(f"Instance not found: {command.instance_id}", root, pack_states)

    definition = target.node.commands.get(command.name)
    pack = None
    if definition is None:
        pack = next((p for p in target.node.packs if command.name in p.commands), None)
        if pack is None:
            return _failure(f"Command not found: {command.name}", root, pack_states)
        definition = pack.commands[command.name]

    try:
        typed_input = validate_input(definition.input_schema, command.input)
    except InputValidationError as e:
        return _failure(f"Invalid input: {e.details}", root, pack_states)

    if pack is not None:
        if pack.name not in pack_states:
            return _failure(f"Pack \"{pack.name}\" has no state", root, pack_states)
        ctx = ToolContext(pack_states[pack.name], pack.state_schema, owner=pack.name)
    else:
        ctx = ToolContext(target.state, target.node.state_schema, owner=target.node.id)

    try:
        output = await invoke_handler(definition.execute, typed_input, ctx)
    except StateValidationError as e:
        # A rejected patch is the handler's failure, same as for tools
        return _failure(f"State update failed: {e}", root, pack_states)
    except StructuralError:
        raise
    except Exception as e:
        return _failure(str(e), root, pack_states)

    # Patches land first; a returned transition then acts on the patched tree
    new_root, new_packs = root, dict(pack_states)
    if ctx.patched and pack is not None:
        new_packs[pack.name] = ctx.current_state
    elif ctx.patched:
        new_root = update_instance_state(root, target.id, ctx.current_state)

    logger.info(f"Command '{command.name}' executed on '{target.node.id}'")

    if isinstance(output, CommandValue):
        result = CommandExecutionResult(success=True, value=output.value)
        return CommandEffects(result=result, root=new_root, pack_states=new_packs)

    if isinstance(output, ToolReply):
        result = CommandExecutionResult(
            success=True, value=output.llm_message, user_message=output.user_message
        )
        messages = [Message(role="assistant", content=output.user_message, kind=MessageKind.USER_REPLY)]
        return CommandEffects(result=result, root=new_root, pack_states=new_packs, messages=messages)

    if is_transition_result(output):
        outcome = apply_transition_result(charter, new_root, output, target_id=target.id)
        messages = []
        value = None
        if outcome.transition_type == StateMachineTransition.POP:
            value = outcome.cede_message
            if outcome.root is not None:
                messages.extend(outcome.cede_messages)
        return CommandEffects(
            result=CommandExecutionResult(success=True, value=value),
            root=outcome.root,
            pack_states=new_packs,
            messages=messages,
            transition=outcome,
        )

    if output is None:
        return CommandEffects(
            result=CommandExecutionResult(success=True), root=new_root, pack_states=new_packs
        )

    return CommandEffects(
        result=CommandExecutionResult(success=True, value=normalize_result(output)),
        root=new_root,
        pack_states=new_packs,
    )


async def run_command(
    machine: Machine,
    name: str,
    input: Optional[Dict[str, Any]] = None,
    instance_id: Optional[str] = None,
) -> CommandExecutionResult:
    """
    Execute a command and commit its effects to `machine`.

    A command that cedes the root frame ends the session: the tree is left as
    it was and the result is still reported as successful.
    """
    if machine.finished:
        raise MachineFinishedError("The session has ended; the root frame already ceded")
    effects = await execute_command(
        machine.charter,
        machine.instance,
        machine.pack_states,
        Command(name=name, input=input or {}, instance_id=instance_id),
    )
    if effects.result.success:
        root = effects.root if effects.root is not None else machine.instance
        machine.commit(root, effects.pack_states, effects.messages)
    return effects.result
