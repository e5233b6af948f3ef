"""
API Layer - Request/Response Schemas

Pydantic models for API request and response validation.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CreateSessionResponse(BaseModel):
    session_id: str
    turn_id: str
    node_id: str


class UserMessage(BaseModel):
    text: str
    # Branch from an earlier turn instead of the current one
    from_turn_id: Optional[str] = None


class ChatMessage(BaseModel):
    role: str
    content: str
    kind: Optional[str] = None


class DebugInfo(BaseModel):
    """Debug information for troubleshooting the machine itself."""
    steps: Optional[List[Dict[str, Any]]] = None


class ChatResponse(BaseModel):
    reply: str
    user_messages: List[str] = Field(default_factory=list)
    status: str
    node_id: str
    turn_id: str
    debug: Optional[DebugInfo] = None


class SessionRead(BaseModel):
    session_id: str
    charter_name: str
    status: str
    current_node: str
    current_turn_id: Optional[str]
    history: List[ChatMessage]
    updated_at: datetime
    debug: Optional[Dict[str, Any]] = None


class CommandRequest(BaseModel):
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)
    instance_id: Optional[str] = None


class CommandRead(BaseModel):
    name: str
    description: str
    input_schema: Dict[str, Any]
    instance_id: str
    source: str


class CommandResponse(BaseModel):
    success: bool
    value: Optional[Any] = None
    error: Optional[str] = None
    user_message: Optional[str] = None
    status: str
    node_id: str
    turn_id: str
