"""
Persistence records.

Plain Pydantic views of what the session store holds, independent of the
storage backend (memory or SQL).
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..state.models import Message, Step


class SessionRecord(BaseModel):
    session_id: str
    charter_name: str
    current_turn_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class TurnRecord(BaseModel):
    """
    One user turn: created with the snapshot the turn starts from, finalized
    with the snapshot it ended on.
    """
    turn_id: str
    session_id: str
    parent_id: Optional[str] = None
    node_id: str
    instance: Dict[str, Any]
    pack_states: Dict[str, Any] = Field(default_factory=dict)
    finalized: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class MessageRecord(BaseModel):
    message_id: str
    session_id: str
    turn_id: Optional[str] = None
    message: Message
    created_at: datetime = Field(default_factory=datetime.utcnow)


class StepRecord(BaseModel):
    session_id: str
    turn_id: str
    step: Step
    created_at: datetime = Field(default_factory=datetime.utcnow)
