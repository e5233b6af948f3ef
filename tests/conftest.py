"""Pytest configuration and fixtures."""

from typing import List, Optional

import pytest
from pydantic import BaseModel

from markov_machines.data.demo_charter import build_demo_charter
from markov_machines.domain.charter import Charter
from markov_machines.domain.models import ArgumentTransition, CodeTransition, Node
from markov_machines.execution.executor import ExecutionContext, Executor
from markov_machines.execution.schemas.state_machine import cede, move_to, spawn
from markov_machines.repositories.session import InMemorySessionRepository
from markov_machines.schemas.responses import ExecutorResponse, StopReason, ToolCall, TransitionCall
from markov_machines.state.instance import create_instance
from markov_machines.state.machine import Machine


class ScriptedExecutor(Executor):
    """Replays canned responses in order and records every context it saw."""

    def __init__(self, responses: Optional[List[ExecutorResponse]] = None):
        self.responses = list(responses or [])
        self.contexts: List[ExecutionContext] = []

    def queue(self, *responses: ExecutorResponse):
        self.responses.extend(responses)

    async def run(self, context: ExecutionContext) -> ExecutorResponse:
        self.contexts.append(context)
        if not self.responses:
            raise RuntimeError("No scripted response left")
        return self.responses.pop(0)


def reply(text: str) -> ExecutorResponse:
    return ExecutorResponse(text=text, stop_reason=StopReason.END_TURN)


def tool_use(name: str, input: dict, call_id: str = "call_1", text: str = "") -> ExecutorResponse:
    return ExecutorResponse(
        text=text,
        tool_calls=[ToolCall(id=call_id, name=name, input=input)],
        stop_reason=StopReason.TOOL_USE,
    )


def transition_to(name: str, args: Optional[dict] = None, call_id: str = "t_1") -> ExecutorResponse:
    return ExecutorResponse(
        transition=TransitionCall(id=call_id, name=name, reason="test", args=args or {}),
        stop_reason=StopReason.TOOL_USE,
    )


# ==============================================================================
# A small two-node charter
# ==============================================================================


class AState(BaseModel):
    count: int = 0


class BState(BaseModel):
    name: str


class ToBArgs(BaseModel):
    name: str


def build_ab_charter(executor: Executor) -> Charter:
    node_b = Node(
        id="B",
        instructions="You are node B.",
        state_schema=BState,
        transitions={
            "finish": CodeTransition(
                description="Hand control back",
                execute=lambda state, ctx: cede(f"done with {state.name}"),
            ),
        },
    )
    node_a = Node(
        id="A",
        instructions="You are node A.",
        state_schema=AState,
        transitions={
            "toB": ArgumentTransition(
                description="Move to B",
                arguments=ToBArgs,
                execute=lambda state, ctx: move_to("B", {"name": ctx.args.name}),
            ),
            "spawnB": CodeTransition(
                description="Open B as a sub-task",
                execute=lambda state, ctx: spawn("B", {"name": "child"}),
            ),
        },
        initial_state={"count": 0},
    )
    return Charter(name="ab", nodes={"A": node_a, "B": node_b}, executors={"standard": executor})


@pytest.fixture
def executor():
    return ScriptedExecutor()


@pytest.fixture
def ab_charter(executor):
    return build_ab_charter(executor)


@pytest.fixture
def ab_machine(ab_charter):
    return Machine(ab_charter, create_instance(ab_charter.get_node("A")))


@pytest.fixture
def demo_charter(executor):
    return build_demo_charter(executor)


@pytest.fixture
def repository():
    return InMemorySessionRepository()
