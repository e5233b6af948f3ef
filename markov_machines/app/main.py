from typing import List

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse, Response

from ..exceptions import InferenceError, MachineFinishedError, MaxStepsExceededError
from ..services.exceptions import SessionFinishedError, SessionNotFoundError, TurnNotFoundError
from ..services.machine import MachineService
from ..state.models import Message
from .dependencies import get_machine_service
from .schemas import (
    ChatMessage,
    ChatResponse,
    CommandRead,
    CommandRequest,
    CommandResponse,
    CreateSessionResponse,
    DebugInfo,
    SessionRead,
    UserMessage,
)

app = FastAPI(title="Markov Machines")


# --- Error mapping ---

@app.exception_handler(SessionNotFoundError)
@app.exception_handler(TurnNotFoundError)
async def not_found_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(SessionFinishedError)
@app.exception_handler(MachineFinishedError)
async def finished_handler(request: Request, exc: Exception):
    # The root frame ceded; only a branch from an earlier turn can continue
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(InferenceError)
async def inference_error_handler(request: Request, exc: InferenceError):
    # The turn was finalized without the failed iteration; the client may retry
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": str(exc)})


@app.exception_handler(MaxStepsExceededError)
async def max_steps_handler(request: Request, exc: MaxStepsExceededError):
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": str(exc)}
    )


def to_chat_message(msg: Message) -> ChatMessage:
    """Domain 'Message' -> API 'ChatMessage' (the public DTO)."""
    return ChatMessage(role=msg.role, content=msg.content, kind=msg.kind.value if msg.kind else None)


# --- Sessions ---

@app.post(
    "/sessions",
    response_model=CreateSessionResponse,
    status_code=status.HTTP_201_CREATED
)
def create_session(service: MachineService = Depends(get_machine_service)):
    """Starts a new session on the charter's initial node."""
    session = service.create_session()
    turn = service.get_current_turn(session.session_id)
    return CreateSessionResponse(
        session_id=session.session_id,
        turn_id=turn.turn_id,
        node_id=turn.node_id,
    )


@app.get("/sessions/{session_id}", response_model=SessionRead)
def get_session(session_id: str, service: MachineService = Depends(get_machine_service)):
    """The session as of its current turn: active node, status and visible history."""
    session = service.get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")

    machine = service.load_machine(session_id)
    return SessionRead(
        session_id=session.session_id,
        charter_name=session.charter_name,
        status="COMPLETED" if machine.finished else "IN_PROGRESS",
        current_node=machine.leaf.node.id,
        current_turn_id=session.current_turn_id,
        history=[to_chat_message(msg) for msg in machine.history if msg.role != "tool"],
        updated_at=session.updated_at,
        debug={"instance": service.get_current_turn(session_id).instance},
    )


@app.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_session(session_id: str, service: MachineService = Depends(get_machine_service)):
    if not service.delete_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    # 204 carries no body
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Messages ---

@app.get("/sessions/{session_id}/messages", response_model=List[ChatMessage])
def list_messages(session_id: str, service: MachineService = Depends(get_machine_service)):
    return [to_chat_message(msg) for msg in service.list_messages(session_id)]


@app.post("/sessions/{session_id}/messages", response_model=ChatResponse)
async def handle_message(
    session_id: str,
    message: UserMessage,
    service: MachineService = Depends(get_machine_service)
):
    """Runs one user turn; `from_turn_id` replays from an earlier turn on a new branch."""
    turn_result = await service.process_message(
        session_id, message.text, from_turn_id=message.from_turn_id
    )

    # TurnResult (Service) -> ChatResponse (API)
    return ChatResponse(
        reply=turn_result.reply,
        user_messages=turn_result.user_messages,
        status=turn_result.status,
        node_id=turn_result.node_id,
        turn_id=turn_result.turn_id,
        debug=DebugInfo(steps=[step.model_dump(mode="json") for step in turn_result.steps]),
    )


# --- Commands ---

@app.get("/sessions/{session_id}/commands", response_model=List[CommandRead])
def list_commands(session_id: str, service: MachineService = Depends(get_machine_service)):
    return [CommandRead(**command.model_dump()) for command in service.get_available_commands(session_id)]


@app.post("/sessions/{session_id}/commands", response_model=CommandResponse)
async def run_command(
    session_id: str,
    command: CommandRequest,
    service: MachineService = Depends(get_machine_service)
):
    """Executes a command directly; the model is not consulted."""
    turn_result = await service.run_command(
        session_id, command.name, command.input, instance_id=command.instance_id
    )

    result = turn_result.command_result
    return CommandResponse(
        success=result.success,
        value=result.value,
        error=result.error,
        user_message=result.user_message,
        status=turn_result.status,
        node_id=turn_result.node_id,
        turn_id=turn_result.turn_id,
    )
