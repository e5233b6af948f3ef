"""
Database Table Definitions.

This module defines the SQL schema using SQLModel.
We use the 'DBModel' suffix to distinguish these persistence models
from the Pydantic records (SessionRecord, TurnRecord, ...).
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class SessionDBModel(SQLModel, table=True):
    """
    Persistence model for conversation sessions.
    Maps 1-to-1 with the 'sessions' table.
    """

    __tablename__ = "sessions"

    session_id: str = Field(primary_key=True, index=True)
    charter_name: str

    # Head of the active branch; advanced by every new turn
    current_turn_id: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class TurnDBModel(SQLModel, table=True):
    """
    One user turn. Branches are formed purely through `parent_id`.
    """

    __tablename__ = "machine_turns"

    turn_id: str = Field(primary_key=True)
    session_id: str = Field(index=True, foreign_key="sessions.session_id")
    parent_id: Optional[str] = Field(default=None, index=True)
    node_id: str

    # Serialized instance tree and pack states, as JSON(B) for flexible schema evolution
    instance: Dict[str, Any] = Field(sa_column=Column(JSONType, nullable=False))
    pack_states: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONType, nullable=False))

    finalized: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class MessageDBModel(SQLModel, table=True):
    """
    A stored message. `turn_id` is optional: messages without a turn are
    visible under every branch.
    """

    __tablename__ = "messages"

    seq: Optional[int] = Field(default=None, primary_key=True)
    message_id: str = Field(index=True, unique=True)
    session_id: str = Field(index=True, foreign_key="sessions.session_id")
    turn_id: Optional[str] = Field(default=None, index=True)
    role: str
    content: str

    # The full Message (tool calls, kind, ...) as JSON(B)
    payload: Dict[str, Any] = Field(sa_column=Column(JSONType, nullable=False))
    created_at: datetime = Field(default_factory=datetime.utcnow)


class StepDBModel(SQLModel, table=True):
    """Durable Step records, one per run-loop iteration."""

    __tablename__ = "machine_steps"

    seq: Optional[int] = Field(default=None, primary_key=True)
    session_id: str = Field(index=True, foreign_key="sessions.session_id")
    turn_id: str = Field(index=True)
    step_number: int

    step: Dict[str, Any] = Field(sa_column=Column(JSONType, nullable=False))
    created_at: datetime = Field(default_factory=datetime.utcnow)
