import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

# Domain & Infra Imports
from ..state.models import Message, Step
from ..infrastructure.database.tables import MessageDBModel, SessionDBModel, StepDBModel, TurnDBModel
from .records import MessageRecord, SessionRecord, StepRecord, TurnRecord


class SessionRepository(ABC):
    """
    Defines how the application stores sessions, turns, messages and steps.
    This allows us change how data is accessed (Memory -> SQL -> API) later
    without changing the service or the run loop.

    Conversation branching lives entirely in the turn parent chain: replaying
    from an older turn creates a sibling turn and leaves the original branch
    untouched.
    """

    @abstractmethod
    def create_session(self, charter_name: str) -> SessionRecord:
        """Creates a new session with a unique ID and no turns."""
        pass

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        pass

    @abstractmethod
    def delete_session(self, session_id: str) -> bool:
        """Deletes a session and everything under it. Returns True if found."""
        pass

    @abstractmethod
    def create_turn(
        self,
        session_id: str,
        parent_id: Optional[str],
        node_id: str,
        instance: Dict[str, Any],
        pack_states: Optional[Dict[str, Any]] = None,
    ) -> TurnRecord:
        """Records a new turn and advances the session's current turn pointer."""
        pass

    @abstractmethod
    def finalize_turn(
        self,
        turn_id: str,
        instance: Dict[str, Any],
        messages: List[Message],
        pack_states: Optional[Dict[str, Any]] = None,
    ) -> TurnRecord:
        """Stores the final snapshot of a turn and the messages it exchanged."""
        pass

    @abstractmethod
    def get_turn(self, turn_id: str) -> Optional[TurnRecord]:
        pass

    @abstractmethod
    def list_turns(self, session_id: str) -> List[TurnRecord]:
        """Every turn of every branch, oldest first."""
        pass

    @abstractmethod
    def add_message(
        self, session_id: str, message: Message, turn_id: Optional[str] = None
    ) -> MessageRecord:
        pass

    @abstractmethod
    def list_messages(self, session_id: str) -> List[MessageRecord]:
        """Every stored message of the session, oldest first."""
        pass

    @abstractmethod
    def add_step(self, session_id: str, turn_id: str, step: Step) -> StepRecord:
        pass

    @abstractmethod
    def list_steps(self, session_id: str, turn_id: Optional[str] = None) -> List[StepRecord]:
        pass

    # ==========================================================================
    # Branch navigation (shared by every backend)
    # ==========================================================================

    def get_turn_path(self, turn_id: str) -> List[TurnRecord]:
        """The turn and its ancestors, oldest first."""
        path = []
        current = self.get_turn(turn_id)
        while current is not None:
            path.append(current)
            current = self.get_turn(current.parent_id) if current.parent_id else None
        path.reverse()
        return path

    def list_messages_for_turn_path(
        self, session_id: str, up_to_turn_id: Optional[str] = None
    ) -> List[MessageRecord]:
        """
        Messages visible on the branch ending at `up_to_turn_id` (the session's
        current turn by default). Messages without a turn are always visible.
        """
        if up_to_turn_id is None:
            session = self.get_session(session_id)
            up_to_turn_id = session.current_turn_id if session else None

        visible = set()
        if up_to_turn_id is not None:
            visible = {turn.turn_id for turn in self.get_turn_path(up_to_turn_id)}

        return [
            record
            for record in self.list_messages(session_id)
            if record.turn_id is None or record.turn_id in visible
        ]


class InMemorySessionRepository(SessionRepository):
    """
    Uses in-memory dictionaries for storage for testing/dev purposes.
    """

    def __init__(self):
        self._sessions: Dict[str, SessionRecord] = {}
        self._turns: Dict[str, TurnRecord] = {}
        self._messages: List[MessageRecord] = []
        self._steps: List[StepRecord] = []

    def create_session(self, charter_name: str) -> SessionRecord:
        session = SessionRecord(session_id=str(uuid.uuid4()), charter_name=charter_name)
        self._sessions[session.session_id] = session
        return session

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        session = self._sessions.get(session_id)
        return session.model_copy() if session else None

    def delete_session(self, session_id: str) -> bool:
        if session_id not in self._sessions:
            return False
        del self._sessions[session_id]
        self._turns = {k: t for k, t in self._turns.items() if t.session_id != session_id}
        self._messages = [m for m in self._messages if m.session_id != session_id]
        self._steps = [s for s in self._steps if s.session_id != session_id]
        return True

    def create_turn(
        self,
        session_id: str,
        parent_id: Optional[str],
        node_id: str,
        instance: Dict[str, Any],
        pack_states: Optional[Dict[str, Any]] = None,
    ) -> TurnRecord:
        session = self._sessions.get(session_id)
        if session is None:
            raise ValueError(f"Session {session_id} does not exist.")

        turn = TurnRecord(
            turn_id=str(uuid.uuid4()),
            session_id=session_id,
            parent_id=parent_id,
            node_id=node_id,
            instance=instance,
            pack_states=pack_states or {},
        )
        self._turns[turn.turn_id] = turn
        session.current_turn_id = turn.turn_id
        session.updated_at = datetime.utcnow()
        return turn.model_copy()

    def finalize_turn(
        self,
        turn_id: str,
        instance: Dict[str, Any],
        messages: List[Message],
        pack_states: Optional[Dict[str, Any]] = None,
    ) -> TurnRecord:
        turn = self._turns.get(turn_id)
        if turn is None:
            raise ValueError(f"Turn {turn_id} does not exist.")

        turn.instance = instance
        turn.pack_states = pack_states or {}
        turn.finalized = True
        turn.updated_at = datetime.utcnow()
        for message in messages:
            self.add_message(turn.session_id, message, turn_id=turn_id)
        return turn.model_copy()

    def get_turn(self, turn_id: str) -> Optional[TurnRecord]:
        turn = self._turns.get(turn_id)
        return turn.model_copy() if turn else None

    def list_turns(self, session_id: str) -> List[TurnRecord]:
        return [t.model_copy() for t in self._turns.values() if t.session_id == session_id]

    def add_message(
        self, session_id: str, message: Message, turn_id: Optional[str] = None
    ) -> MessageRecord:
        record = MessageRecord(
            message_id=str(uuid.uuid4()),
            session_id=session_id,
            turn_id=turn_id,
            message=message,
        )
        self._messages.append(record)
        return record

    def list_messages(self, session_id: str) -> List[MessageRecord]:
        return [m for m in self._messages if m.session_id == session_id]

    def add_step(self, session_id: str, turn_id: str, step: Step) -> StepRecord:
        record = StepRecord(session_id=session_id, turn_id=turn_id, step=step)
        self._steps.append(record)
        return record

    def list_steps(self, session_id: str, turn_id: Optional[str] = None) -> List[StepRecord]:
        return [
            s for s in self._steps
            if s.session_id == session_id and (turn_id is None or s.turn_id == turn_id)
        ]


class SqlSessionRepository(SessionRepository):
    """
    SQL storage (PostgreSQL + JSONB in production, SQLite in tests).
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def create_session(self, charter_name: str) -> SessionRecord:
        db_model = SessionDBModel(session_id=str(uuid.uuid4()), charter_name=charter_name)

        with Session(self.engine) as db:
            db.add(db_model)
            db.commit()
            db.refresh(db_model)
            return self._to_session(db_model)

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        with Session(self.engine) as db:
            result = db.get(SessionDBModel, session_id)
            return self._to_session(result) if result else None

    def delete_session(self, session_id: str) -> bool:
        with Session(self.engine) as db:
            result = db.get(SessionDBModel, session_id)
            if not result:
                return False

            # Children first, the foreign keys point at the session
            for table in (StepDBModel, MessageDBModel, TurnDBModel):
                for row in db.exec(select(table).where(table.session_id == session_id)).all():
                    db.delete(row)
            db.flush()
            db.delete(result)
            db.commit()
            return True

    def create_turn(
        self,
        session_id: str,
        parent_id: Optional[str],
        node_id: str,
        instance: Dict[str, Any],
        pack_states: Optional[Dict[str, Any]] = None,
    ) -> TurnRecord:
        with Session(self.engine) as db:
            session = db.get(SessionDBModel, session_id)
            if not session:
                raise ValueError(f"Session {session_id} does not exist in DB.")

            turn = TurnDBModel(
                turn_id=str(uuid.uuid4()),
                session_id=session_id,
                parent_id=parent_id,
                node_id=node_id,
                instance=instance,
                pack_states=pack_states or {},
            )
            db.add(turn)
            db.flush()

            session.current_turn_id = turn.turn_id
            session.updated_at = datetime.utcnow()
            db.add(session)
            db.commit()
            db.refresh(turn)
            return self._to_turn(turn)

    def finalize_turn(
        self,
        turn_id: str,
        instance: Dict[str, Any],
        messages: List[Message],
        pack_states: Optional[Dict[str, Any]] = None,
    ) -> TurnRecord:
        with Session(self.engine) as db:
            turn = db.get(TurnDBModel, turn_id)
            if not turn:
                raise ValueError(f"Turn {turn_id} does not exist in DB.")

            # Update the JSON blobs and the timestamp
            turn.instance = instance
            turn.pack_states = pack_states or {}
            turn.finalized = True
            turn.updated_at = datetime.utcnow()
            db.add(turn)
            for message in messages:
                db.add(self._message_row(turn.session_id, message, turn_id))
            db.commit()
            db.refresh(turn)
            return self._to_turn(turn)

    def get_turn(self, turn_id: str) -> Optional[TurnRecord]:
        with Session(self.engine) as db:
            result = db.get(TurnDBModel, turn_id)
            return self._to_turn(result) if result else None

    def list_turns(self, session_id: str) -> List[TurnRecord]:
        with Session(self.engine) as db:
            statement = (
                select(TurnDBModel)
                .where(TurnDBModel.session_id == session_id)
                .order_by(TurnDBModel.created_at)
            )
            return [self._to_turn(row) for row in db.exec(statement).all()]

    def add_message(
        self, session_id: str, message: Message, turn_id: Optional[str] = None
    ) -> MessageRecord:
        with Session(self.engine) as db:
            row = self._message_row(session_id, message, turn_id)
            db.add(row)
            db.commit()
            db.refresh(row)
            return self._to_message(row)

    def list_messages(self, session_id: str) -> List[MessageRecord]:
        with Session(self.engine) as db:
            statement = (
                select(MessageDBModel)
                .where(MessageDBModel.session_id == session_id)
                .order_by(MessageDBModel.seq)
            )
            return [self._to_message(row) for row in db.exec(statement).all()]

    def add_step(self, session_id: str, turn_id: str, step: Step) -> StepRecord:
        with Session(self.engine) as db:
            row = StepDBModel(
                session_id=session_id,
                turn_id=turn_id,
                step_number=step.step_number,
                step=step.model_dump(mode="json"),
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return self._to_step(row)

    def list_steps(self, session_id: str, turn_id: Optional[str] = None) -> List[StepRecord]:
        with Session(self.engine) as db:
            statement = select(StepDBModel).where(StepDBModel.session_id == session_id)
            if turn_id is not None:
                statement = statement.where(StepDBModel.turn_id == turn_id)
            statement = statement.order_by(StepDBModel.seq)
            return [self._to_step(row) for row in db.exec(statement).all()]

    # ==========================================================================
    # Row <-> record mapping
    # ==========================================================================

    @staticmethod
    def _message_row(session_id: str, message: Message, turn_id: Optional[str]) -> MessageDBModel:
        return MessageDBModel(
            message_id=str(uuid.uuid4()),
            session_id=session_id,
            turn_id=turn_id,
            role=message.role,
            content=message.content,
            payload=message.model_dump(mode="json"),
        )

    @staticmethod
    def _to_session(row: SessionDBModel) -> SessionRecord:
        return SessionRecord(
            session_id=row.session_id,
            charter_name=row.charter_name,
            current_turn_id=row.current_turn_id,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _to_turn(row: TurnDBModel) -> TurnRecord:
        return TurnRecord(
            turn_id=row.turn_id,
            session_id=row.session_id,
            parent_id=row.parent_id,
            node_id=row.node_id,
            instance=row.instance,
            pack_states=row.pack_states or {},
            finalized=row.finalized,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _to_message(row: MessageDBModel) -> MessageRecord:
        return MessageRecord(
            message_id=row.message_id,
            session_id=row.session_id,
            turn_id=row.turn_id,
            # Deserialize JSON back into the Pydantic Message
            message=Message.model_validate(row.payload),
            created_at=row.created_at,
        )

    @staticmethod
    def _to_step(row: StepDBModel) -> StepRecord:
        return StepRecord(
            session_id=row.session_id,
            turn_id=row.turn_id,
            step=Step.model_validate(row.step),
            created_at=row.created_at,
        )
