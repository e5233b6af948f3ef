"""
Machine Service - Application Orchestration Layer

This service is the entry point for all conversation operations. It
orchestrates the interaction between the Data Layer (SessionRepository), the
Logic Layer (Charter/MachineEngine) and the API. For every user turn it
rebuilds the Machine from the last durable turn, runs it, and records the
resulting steps, messages and snapshot as a new turn.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..domain.charter import Charter
from ..execution.commands import get_available_commands
from ..execution.engine import MachineEngine, RunInput
from ..repositories.records import SessionRecord, TurnRecord
from ..repositories.session import SessionRepository
from ..state.instance import create_instance, get_active_instance
from ..state.machine import Machine
from ..state.models import Command, CommandExecutionResult, CommandInfo, Message, Step, YieldReason
from ..state.serialization import (
    SerializedMachine,
    deserialize_machine,
    serialize_instance,
    serialize_pack_states,
)
from .exceptions import SessionFinishedError, SessionNotFoundError, TurnNotFoundError

logger = logging.getLogger(__name__)


class TurnResult(BaseModel):
    session_id: str
    turn_id: str
    reply: str
    user_messages: List[str] = Field(default_factory=list)
    node_id: str
    status: str  # IN_PROGRESS or COMPLETED
    steps: List[Step] = Field(default_factory=list)
    command_result: Optional[CommandExecutionResult] = None


class MachineService:
    def __init__(
        self,
        charter: Charter,
        repository: SessionRepository,
        engine: MachineEngine,
        initial_node_id: str,
    ):
        self.charter = charter
        self.repository = repository
        self.engine = engine
        self.initial_node = charter.get_node(initial_node_id)

    # ==========================================================================
    # Sessions
    # ==========================================================================

    def create_session(self) -> SessionRecord:
        """Creates a session whose first turn holds a fresh machine."""
        session = self.repository.create_session(self.charter.name)
        machine = Machine(self.charter, create_instance(self.initial_node))
        turn = self.repository.create_turn(
            session.session_id,
            parent_id=None,
            node_id=self.initial_node.id,
            instance=serialize_instance(machine.instance, self.charter).to_portable_dict(),
            pack_states=serialize_pack_states(machine.pack_states),
        )
        self.repository.finalize_turn(
            turn.turn_id, turn.instance, messages=[], pack_states=turn.pack_states
        )
        logger.info(f"Created session {session.session_id} on node '{self.initial_node.id}'")
        return self.repository.get_session(session.session_id)

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        """Retrieves a session (for resuming)."""
        return self.repository.get_session(session_id)

    def delete_session(self, session_id: str) -> bool:
        return self.repository.delete_session(session_id)

    def get_current_turn(self, session_id: str) -> TurnRecord:
        session = self._require_session(session_id)
        return self._require_turn(session_id, session.current_turn_id)

    def is_finished(self, session_id: str, turn_id: Optional[str] = None) -> bool:
        """True when the root frame ceded in the given (or current) turn."""
        turn_id = turn_id or self._require_session(session_id).current_turn_id
        steps = self.repository.list_steps(session_id, turn_id=turn_id)
        return bool(steps) and steps[-1].step.yield_reason == YieldReason.END_SESSION

    def list_messages(self, session_id: str, turn_id: Optional[str] = None) -> List[Message]:
        """Conversation as seen from `turn_id` (the current turn by default)."""
        self._require_session(session_id)
        if turn_id is not None:
            self._require_turn(session_id, turn_id)
        records = self.repository.list_messages_for_turn_path(session_id, up_to_turn_id=turn_id)
        return [record.message for record in records]

    # ==========================================================================
    # Turns
    # ==========================================================================

    def load_machine(self, session_id: str, turn_id: Optional[str] = None) -> Machine:
        """
        Rebuild the machine as of `turn_id` against the current charter.
        History is the messages of every finalized turn on that branch.
        """
        session = self._require_session(session_id)
        turn = self._require_turn(session_id, turn_id or session.current_turn_id)
        history = self.list_messages(session_id, turn.turn_id)
        return deserialize_machine(
            self.charter,
            SerializedMachine(
                instance=turn.instance,
                history=history,
                pack_states=turn.pack_states,
                finished=self.is_finished(session_id, turn.turn_id),
            ),
        )

    async def process_message(
        self, session_id: str, text: str, from_turn_id: Optional[str] = None
    ) -> TurnResult:
        """
        The Core Loop:
        1. Load the machine from the base turn (current, or `from_turn_id` to branch)
        2. Open a new turn on top of it
        3. Run the engine until it yields to the user
        4. Finalize the turn with the resulting snapshot and messages
        """
        return await self._run_turn(session_id, text, from_turn_id)

    async def run_command(
        self,
        session_id: str,
        name: str,
        input: Optional[Dict[str, Any]] = None,
        instance_id: Optional[str] = None,
    ) -> TurnResult:
        command = Command(name=name, input=input or {}, instance_id=instance_id)
        return await self._run_turn(session_id, command, None)

    def get_available_commands(self, session_id: str) -> List[CommandInfo]:
        return get_available_commands(self.load_machine(session_id))

    async def _run_turn(
        self, session_id: str, input: RunInput, from_turn_id: Optional[str]
    ) -> TurnResult:
        session = self._require_session(session_id)
        base_turn_id = from_turn_id or session.current_turn_id
        machine = self.load_machine(session_id, base_turn_id)
        if machine.finished:
            raise SessionFinishedError(session_id)
        history_length = len(machine.history)

        turn = self.repository.create_turn(
            session_id,
            parent_id=base_turn_id,
            node_id=machine.leaf.node.id,
            instance=serialize_instance(machine.instance, self.charter).to_portable_dict(),
            pack_states=serialize_pack_states(machine.pack_states),
        )
        if from_turn_id and from_turn_id != session.current_turn_id:
            logger.info(f"Session {session_id}: branching from turn {from_turn_id}")

        steps: List[Step] = []
        try:
            async for step in self.engine.run(machine, input):
                self.repository.add_step(session_id, turn.turn_id, step)
                steps.append(step)
        finally:
            # Whatever was committed before a failure is kept
            self.repository.finalize_turn(
                turn.turn_id,
                instance=serialize_instance(machine.instance, self.charter).to_portable_dict(),
                messages=machine.history[history_length:],
                pack_states=serialize_pack_states(machine.pack_states),
            )

        finished = machine.finished
        return TurnResult(
            session_id=session_id,
            turn_id=turn.turn_id,
            reply="\n\n".join(step.response for step in steps if step.response),
            user_messages=[msg for step in steps for msg in step.user_messages],
            node_id=get_active_instance(machine.instance).node.id,
            status="COMPLETED" if finished else "IN_PROGRESS",
            steps=steps,
            command_result=steps[-1].command_result if steps else None,
        )

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def _require_session(self, session_id: str) -> SessionRecord:
        session = self.repository.get_session(session_id)
        if not session:
            raise SessionNotFoundError(session_id)
        return session

    def _require_turn(self, session_id: str, turn_id: Optional[str]) -> TurnRecord:
        turn = self.repository.get_turn(turn_id) if turn_id else None
        if turn is None or turn.session_id != session_id:
            raise TurnNotFoundError(str(turn_id))
        return turn
