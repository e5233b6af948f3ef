"""
Engine - Run Loop Orchestration Layer

The MachineEngine is the deterministic driver ("The Manager") that advances a
Machine one iteration at a time and delegates inference to the executor
named by the active frame ("The Worker").
-----------------------------------------------

One iteration:
1. Assemble the context for the leaf frame (prompt, tools, history).
2. Await the executor. This is the only suspension point besides tool I/O.
3. Apply tool calls in the order returned; each call sees the state left by
    the previous ones.
4. Apply at most one transition, against the state the tool calls left.
5. Commit tree, pack states, messages and the Step in one go, then yield
    the Step.

Nothing is written to the Machine before step 5, so a failed or cancelled
iteration leaves the last committed Step as the resume point.

The Control Logic is "Momentum-Based":
- After tool use, a move, a spawn or a cede to a parent, the engine keeps the
    floor and runs the new leaf immediately (System Turn).
- After a plain reply, a truncated reply, or a cede from the root, control
    goes back to the caller (User Turn).
"""

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import AsyncIterator, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel

from ..config import settings
from ..domain.charter import Charter
from ..exceptions import (
    InferenceError,
    MachineFinishedError,
    MaxStepsExceededError,
    StateValidationError,
    TransitionError,
)
from ..schemas.responses import ExecutorResponse, StopReason, ToolCall, TransitionCall
from ..state.instance import (
    Instance,
    find_instance,
    get_active_instance,
    get_instance_path,
    update_instance_state,
)
from ..state.machine import Machine
from ..state.merge import merge_state
from ..state.models import Command, Message, MessageKind, Step, ToolCallRecord, YieldReason
from ..state.serialization import serialize_instance, serialize_pack_states
from .commands import execute_command
from .executor import ExecutionContext, extract_transition
from .prompts import PromptOptions, render_system_prompt
from .schemas.state_machine import StateMachineTransition, TransitionOutcome
from .tool_definitions import UPDATE_STATE_TOOL, generate_tool_definitions, is_transition_tool
from .tools import ToolOutcome, ToolScope, execute_tool, resolve_tool
from .transitions import apply_transition_result, execute_transition

logger = logging.getLogger(__name__)

RunInput = Union[str, Command, None]


class DialogueControlAction(Enum):
    """Next dialogue management action"""

    WAIT_FOR_USER_INPUT = auto()  # Yield to user
    CONTINUE_IMMEDIATELY = auto()  # Loop internally


@dataclass
class PendingEffects:
    """Working copy of everything an iteration changes, until commit."""
    root: Instance
    pack_states: Dict[str, BaseModel]
    messages: List[Message] = field(default_factory=list)
    user_messages: List[str] = field(default_factory=list)
    transition: Optional[TransitionOutcome] = None
    tool_used: bool = False


def pending_cede_message(history: List[Message]) -> Optional[str]:
    """Result of a child that ceded and has not been answered yet."""
    parts: List[str] = []
    for msg in reversed(history):
        if msg.kind == MessageKind.CEDE:
            parts.append(msg.content)
            continue
        if parts or (msg.role == "assistant" and msg.kind != MessageKind.USER_REPLY):
            break
    return "\n".join(reversed(parts)) or None


class MachineEngine:
    def __init__(self, max_steps: int = settings.MAX_STEPS):
        self.max_steps = max_steps

    async def run(self, machine: Machine, input: RunInput = None) -> AsyncIterator[Step]:
        """
        Drive `machine` for one user turn, yielding each Step once committed.

        `input` is the user's text, a Command (executed without inference), or
        None to let the active frame continue on its own.

        Raises:
            InferenceError: the executor failed; the machine is unchanged.
            MachineFinishedError: the root frame ceded in an earlier turn.
            MaxStepsExceededError: the turn kept going past `max_steps`.
            StructuralError: a transition produced an impossible tree.
        """
        if machine.finished:
            raise MachineFinishedError("The session has ended; the root frame already ceded")

        if isinstance(input, Command):
            yield await self._run_command(machine, input)
            return

        pending = [Message(role="user", content=input)] if input else []

        for step_count in range(1, self.max_steps + 1):
            step, action = await self._iterate(machine, pending, step_count)
            yield step

            if action == DialogueControlAction.WAIT_FOR_USER_INPUT:
                return
            pending = []

        logger.warning(f"Run loop stopped after {self.max_steps} steps")
        raise MaxStepsExceededError(self.max_steps)

    # ==========================================================================
    # One iteration
    # ==========================================================================

    async def _iterate(
        self, machine: Machine, pending: List[Message], step_count: int
    ) -> Tuple[Step, DialogueControlAction]:
        charter = machine.charter

        # 1. Load Context
        context = self._build_context(machine, pending, step_count)
        leaf = context.instance
        executor_name = leaf.executor_name
        executor = charter.get_executor(executor_name, node_id=leaf.node.id)

        # 2. Execute (Worker)
        try:
            response = await executor.run(context)
        except Exception as e:
            logger.error(f"Executor '{executor_name}' failed on node '{leaf.node.id}': {e}")
            raise InferenceError(f"Executor \"{executor_name}\" failed: {e}") from e
        response = extract_transition(response)

        # 3. Apply Effects (working copy only)
        effects = PendingEffects(root=machine.instance, pack_states=dict(machine.pack_states))
        effects.messages.append(self._assistant_message(response))
        for call in response.tool_calls:
            outcome = await self._apply_tool_call(charter, effects, call)
            self._record_tool_result(effects, call.id, outcome)
        if response.transition is not None:
            await self._apply_transition(charter, effects, response.transition)

        # 4. Translate to loop control
        yield_reason, action = self._derive_control(response, effects)

        # 5. Commit
        step = Step(
            step_number=len(machine.steps) + 1,
            instance_id=leaf.id,
            node_id=leaf.node.id,
            yield_reason=yield_reason,
            response=response.text,
            messages=pending + effects.messages,
            instance=serialize_instance(effects.root, charter),
            pack_states=serialize_pack_states(effects.pack_states),
            user_messages=effects.user_messages,
            cede_message=effects.transition.cede_message if effects.transition else None,
            done=action == DialogueControlAction.WAIT_FOR_USER_INPUT,
        )
        machine.commit(effects.root, effects.pack_states, pending + effects.messages, step)
        logger.debug(
            f"Step {step.step_number} on node '{step.node_id}': {yield_reason.value}"
        )
        return step, action

    def _build_context(
        self, machine: Machine, pending: List[Message], step_count: int
    ) -> ExecutionContext:
        path = get_instance_path(machine.instance)
        leaf = path[-1]
        history = machine.history + pending
        system_prompt = render_system_prompt(
            machine.charter,
            leaf.node,
            leaf.state,
            path[:-1],
            machine.pack_states,
            PromptOptions(
                current_step=step_count,
                max_steps=self.max_steps,
                cede_message=pending_cede_message(history),
            ),
        )
        return ExecutionContext(
            instance=leaf,
            ancestors=path[:-1],
            system_prompt=system_prompt,
            tools=generate_tool_definitions(machine.charter, path),
            messages=history,
            pack_states=dict(machine.pack_states),
            step_number=step_count,
            max_steps=self.max_steps,
        )

    # ==========================================================================
    # Logic & Control (Pure Domain)
    # ==========================================================================

    def _derive_control(
        self, response: ExecutorResponse, effects: PendingEffects
    ) -> Tuple[YieldReason, DialogueControlAction]:
        """
        Derives the loop control signal from what happened to the tree.
        """
        outcome = effects.transition
        if outcome is not None:
            if outcome.transition_type == StateMachineTransition.POP:
                if outcome.root is None:
                    # The root ceded: nobody is left to take the next turn
                    return YieldReason.END_SESSION, DialogueControlAction.WAIT_FOR_USER_INPUT
                return YieldReason.CEDE, DialogueControlAction.CONTINUE_IMMEDIATELY
            return YieldReason.TRANSITION, DialogueControlAction.CONTINUE_IMMEDIATELY

        # The model must see its tool results
        if effects.tool_used:
            return YieldReason.TOOL_USE, DialogueControlAction.CONTINUE_IMMEDIATELY

        if response.stop_reason == StopReason.MAX_TOKENS:
            return YieldReason.MAX_TOKENS, DialogueControlAction.WAIT_FOR_USER_INPUT
        return YieldReason.END_TURN, DialogueControlAction.WAIT_FOR_USER_INPUT

    # ==========================================================================
    # State Mutation
    # ==========================================================================

    async def _apply_tool_call(
        self, charter: Charter, effects: PendingEffects, call: ToolCall
    ) -> ToolOutcome:
        effects.tool_used = True
        logger.debug(f"Dispatching tool call '{call.name}'")

        if call.name == UPDATE_STATE_TOOL:
            return self._update_state(effects, call)

        if is_transition_tool(call.name):
            logger.warning(f"Rejected extra transition call '{call.name}'")
            return ToolOutcome(
                result="Only one transition can be taken per response; this one was ignored.",
                is_error=True,
            )

        resolved = resolve_tool(charter, get_instance_path(effects.root), call.name)
        if resolved is None:
            logger.warning(f"Unknown tool '{call.name}'")
            return ToolOutcome(result=f"Unknown tool: {call.name}", is_error=True)

        if resolved.scope == ToolScope.PACK:
            pack = charter.get_pack(resolved.pack_name)
            pack_state = effects.pack_states.get(pack.name)
            if pack_state is None:
                return ToolOutcome(result=f"Pack \"{pack.name}\" has no state", is_error=True)
            outcome = await execute_tool(
                resolved.tool, call.input, pack_state, pack.state_schema, owner=pack.name
            )
            if outcome.state is not None and not outcome.is_error:
                effects.pack_states[pack.name] = outcome.state
            return outcome

        owner = find_instance(effects.root, resolved.instance_id)
        outcome = await execute_tool(
            resolved.tool, call.input, owner.state, owner.node.state_schema, owner=owner.node.id
        )
        if outcome.state is not None and not outcome.is_error:
            effects.root = update_instance_state(effects.root, owner.id, outcome.state)
        return outcome

    def _update_state(self, effects: PendingEffects, call: ToolCall) -> ToolOutcome:
        leaf = get_active_instance(effects.root)
        patch = call.input.get("patch")
        if not isinstance(patch, dict):
            return ToolOutcome(result="Invalid tool input: patch must be an object", is_error=True)
        try:
            new_state = merge_state(leaf.node.state_schema, leaf.state, patch, owner=leaf.node.id)
        except (StateValidationError, TypeError) as e:
            logger.warning(f"Rejected state patch for '{leaf.node.id}': {e}")
            return ToolOutcome(result=f"State update failed: {e}", is_error=True)
        effects.root = update_instance_state(effects.root, leaf.id, new_state)
        return ToolOutcome(result="State updated", state=new_state)

    async def _apply_transition(
        self, charter: Charter, effects: PendingEffects, call: TransitionCall
    ):
        # Runs against the state the tool calls of this response left behind
        leaf = get_active_instance(effects.root)
        try:
            result = await execute_transition(charter, leaf, call.name, call.args, call.reason)
        except TransitionError as e:
            logger.warning(str(e))
            effects.tool_used = True
            self._record_tool_result(effects, call.id, ToolOutcome(result=str(e), is_error=True))
            return

        # Structural failures propagate: the iteration is abandoned uncommitted
        outcome = apply_transition_result(charter, effects.root, result)
        effects.transition = outcome

        if outcome.transition_type == StateMachineTransition.ADVANCE:
            text = f"Transitioned to {outcome.instance.node.id}"
        elif outcome.transition_type == StateMachineTransition.PUSH:
            text = f"Spawned {outcome.instance.node.id}"
        elif outcome.root is None:
            text = "Ceded from the root frame; the session is finished"
        else:
            text = f"Ceded to {get_active_instance(outcome.root).node.id}"
        self._record_tool_result(effects, call.id, ToolOutcome(result=text))

        if outcome.root is not None:
            effects.root = outcome.root
            effects.messages.extend(outcome.cede_messages)

    # ==========================================================================
    # Standard Helpers
    # ==========================================================================

    def _assistant_message(self, response: ExecutorResponse) -> Message:
        calls = [
            ToolCallRecord(id=call.id, name=call.name, input=call.input)
            for call in response.tool_calls
        ]
        if response.transition is not None:
            transition = response.transition
            calls.append(
                ToolCallRecord(
                    id=transition.id,
                    name=transition.name,
                    input={"reason": transition.reason, **transition.args},
                )
            )
        return Message(role="assistant", content=response.text, tool_calls=calls)

    def _record_tool_result(self, effects: PendingEffects, call_id: str, outcome: ToolOutcome):
        effects.messages.append(
            Message(
                role="tool",
                tool_call_id=call_id,
                content=outcome.result,
                is_error=outcome.is_error,
            )
        )
        if outcome.user_message:
            effects.user_messages.append(outcome.user_message)
            effects.messages.append(
                Message(role="assistant", content=outcome.user_message, kind=MessageKind.USER_REPLY)
            )

    async def _run_command(self, machine: Machine, command: Command) -> Step:
        effects = await execute_command(
            machine.charter, machine.instance, machine.pack_states, command
        )
        result = effects.result
        root = effects.root if effects.root is not None else machine.instance
        if effects.transition is not None and effects.root is None:
            yield_reason = YieldReason.END_SESSION
        else:
            yield_reason = YieldReason.COMMAND

        messages = [
            Message(role="user", content=f"/{command.name}", kind=MessageKind.COMMAND)
        ] + effects.messages
        leaf = get_active_instance(machine.instance)
        step = Step(
            step_number=len(machine.steps) + 1,
            instance_id=leaf.id,
            node_id=leaf.node.id,
            yield_reason=yield_reason,
            response=result.error or "",
            messages=messages,
            instance=serialize_instance(root, machine.charter),
            pack_states=serialize_pack_states(effects.pack_states),
            user_messages=[result.user_message] if result.user_message else [],
            cede_message=effects.transition.cede_message if effects.transition else None,
            command_result=result,
            done=True,
        )
        machine.commit(root, effects.pack_states, messages, step)
        return step


# ==============================================================================
# Module helpers
# ==============================================================================


async def run_machine(
    machine: Machine, input: RunInput = None, max_steps: int = settings.MAX_STEPS
) -> AsyncIterator[Step]:
    """Lazily yield the Steps of one turn. Stop consuming at any time."""
    engine = MachineEngine(max_steps=max_steps)
    async for step in engine.run(machine, input):
        yield step


async def run_machine_to_completion(
    machine: Machine, input: RunInput = None, max_steps: int = settings.MAX_STEPS
) -> List[Step]:
    return [step async for step in run_machine(machine, input, max_steps=max_steps)]
