"""Tests for the run loop."""

import asyncio

import pytest
from pydantic import BaseModel

from markov_machines.domain.charter import Charter
from markov_machines.domain.models import Node, ToolDefinition
from markov_machines.exceptions import InferenceError, MachineFinishedError, MaxStepsExceededError
from markov_machines.execution.engine import MachineEngine, run_machine_to_completion
from markov_machines.execution.executor import ExecutionContext, Executor
from markov_machines.schemas.responses import ExecutorResponse, StopReason, ToolCall, TransitionCall
from markov_machines.state.instance import create_instance, tree_depth
from markov_machines.state.machine import Machine
from markov_machines.state.models import MessageKind, YieldReason

from conftest import AState, build_ab_charter, reply, tool_use, transition_to


async def test_plain_reply_waits_for_user(ab_machine, executor):
    executor.queue(reply("Hello"))

    steps = await run_machine_to_completion(ab_machine, "hi")

    assert len(steps) == 1
    assert steps[0].yield_reason == YieldReason.END_TURN
    assert steps[0].response == "Hello"
    assert steps[0].done
    assert [m.role for m in ab_machine.history] == ["user", "assistant"]


async def test_argument_transition_moves_and_continues(ab_machine, executor):
    executor.queue(transition_to("toB", {"name": "x"}), reply("I am B"))

    steps = await run_machine_to_completion(ab_machine, "go to B")

    assert [s.yield_reason for s in steps] == [YieldReason.TRANSITION, YieldReason.END_TURN]
    assert ab_machine.leaf.node.id == "B"
    assert ab_machine.leaf.state.model_dump() == {"name": "x"}
    assert steps[0].instance.node == "B"
    # The second iteration runs the new leaf
    assert executor.contexts[1].node.id == "B"
    assert "You are node B." in executor.contexts[1].system_prompt


async def test_invalid_transition_args_are_reported_to_the_model(ab_machine, executor):
    executor.queue(transition_to("toB", {}), reply("Sorry"))

    steps = await run_machine_to_completion(ab_machine, "go")

    assert steps[0].yield_reason == YieldReason.TOOL_USE
    assert ab_machine.leaf.node.id == "A"
    tool_results = [m for m in steps[0].messages if m.role == "tool"]
    assert tool_results[0].is_error
    assert "name" in tool_results[0].content


async def test_update_state_then_transition_sees_the_patch(ab_machine, executor):
    response = ExecutorResponse(
        tool_calls=[ToolCall(id="c1", name="updateState", input={"patch": {"count": 5}})],
        transition=TransitionCall(id="t1", name="spawnB"),
        stop_reason=StopReason.TOOL_USE,
    )
    executor.queue(response, reply("child here"))

    steps = await run_machine_to_completion(ab_machine, "go")

    assert steps[0].yield_reason == YieldReason.TRANSITION
    assert tree_depth(ab_machine.instance) == 2
    assert ab_machine.instance.state.count == 5


async def test_invalid_state_patch_is_an_error_result(ab_machine, executor):
    executor.queue(tool_use("updateState", {"patch": {"count": "many"}}), reply("oops"))

    steps = await run_machine_to_completion(ab_machine, "go")

    assert steps[0].yield_reason == YieldReason.TOOL_USE
    assert ab_machine.instance.state.count == 0
    assert steps[0].messages[-1].is_error


async def test_second_transition_in_one_response_is_rejected(ab_machine, executor):
    response = ExecutorResponse(
        tool_calls=[
            ToolCall(id="c1", name="transition_toB", input={"reason": "r", "name": "x"}),
            ToolCall(id="c2", name="transition", input={"reason": "r", "to": "spawnB"}),
        ],
        stop_reason=StopReason.TOOL_USE,
    )
    executor.queue(response, reply("done"))

    steps = await run_machine_to_completion(ab_machine, "go")

    assert steps[0].yield_reason == YieldReason.TRANSITION
    assert ab_machine.leaf.node.id == "B"
    assert tree_depth(ab_machine.instance) == 1
    errors = [m for m in steps[0].messages if m.role == "tool" and m.is_error]
    assert [m.tool_call_id for m in errors] == ["c2"]


async def test_cede_returns_to_parent_with_message(ab_machine, executor):
    executor.queue(
        transition_to("spawnB"),
        transition_to("finish", call_id="t_2"),
        reply("Welcome back"),
    )

    steps = await run_machine_to_completion(ab_machine, "start")

    assert [s.yield_reason for s in steps] == [
        YieldReason.TRANSITION,
        YieldReason.CEDE,
        YieldReason.END_TURN,
    ]
    assert steps[1].cede_message == "done with child"
    assert tree_depth(ab_machine.instance) == 1
    assert "done with child" in executor.contexts[2].system_prompt
    assert any(m.kind == MessageKind.CEDE for m in ab_machine.history)


async def test_root_cede_ends_the_session(demo_charter, executor):
    machine = Machine(demo_charter, create_instance(demo_charter.get_node("guide"), {"name": "Ada"}))
    before = machine.instance
    executor.queue(transition_to("sayGoodbye"))

    steps = await run_machine_to_completion(machine, "bye")

    assert len(steps) == 1
    assert steps[0].yield_reason == YieldReason.END_SESSION
    assert steps[0].cede_message == "Ada says goodbye!"
    assert steps[0].done
    assert machine.instance is before
    assert machine.finished


async def test_finished_machine_refuses_to_run(demo_charter, executor):
    machine = Machine(demo_charter, create_instance(demo_charter.get_node("guide"), {"name": "Ada"}))
    executor.queue(transition_to("sayGoodbye"), reply("unused"))
    await run_machine_to_completion(machine, "bye")
    history = list(machine.history)

    with pytest.raises(MachineFinishedError):
        await run_machine_to_completion(machine, "hello again")

    assert len(executor.contexts) == 1
    assert machine.history == history
    assert len(machine.steps) == 1


async def test_executor_failure_leaves_machine_untouched(ab_machine, executor):
    before = ab_machine.instance

    with pytest.raises(InferenceError):
        await run_machine_to_completion(ab_machine, "hi")

    assert ab_machine.instance is before
    assert ab_machine.history == []
    assert ab_machine.steps == []


async def test_max_steps_exceeded(ab_machine, executor):
    for i in range(3):
        executor.queue(tool_use("updateState", {"patch": {"count": i}}, call_id=f"c{i}"))
    engine = MachineEngine(max_steps=3)

    steps = []
    with pytest.raises(MaxStepsExceededError) as exc:
        async for step in engine.run(ab_machine, "loop"):
            steps.append(step)

    assert len(steps) == 3
    assert "Max steps (3) exceeded" in str(exc.value)
    # Every yielded step was committed
    assert len(ab_machine.steps) == 3
    assert ab_machine.instance.state.count == 2


async def test_consumer_can_stop_early(ab_machine, executor):
    executor.queue(transition_to("toB", {"name": "x"}), reply("never requested"))

    async for step in MachineEngine().run(ab_machine, "go"):
        break

    assert ab_machine.leaf.node.id == "B"
    assert len(ab_machine.steps) == 1
    assert len(executor.responses) == 1


async def test_pack_tool_updates_pack_state(demo_charter, executor):
    machine = Machine(demo_charter, create_instance(demo_charter.get_node("guide"), {"name": "Ada"}))
    executor.queue(
        tool_use("setMemory", {"key": "color", "value": "blue"}),
        reply("Noted"),
    )

    steps = await run_machine_to_completion(machine, "remember blue")

    assert machine.pack_states["memory"].memories == {"color": "blue"}
    assert steps[0].pack_states == {"memory": {"memories": {"color": "blue"}}}
    assert '"color": "blue"' in executor.contexts[1].system_prompt


async def test_step_warning_near_the_limit(ab_machine, executor):
    executor.queue(
        tool_use("updateState", {"patch": {"count": 1}}, call_id="c1"),
        reply("done"),
    )

    await run_machine_to_completion(ab_machine, "go", max_steps=2)

    assert "WARNING" in executor.contexts[0].system_prompt
    assert "CRITICAL" in executor.contexts[1].system_prompt


class AddInput(BaseModel):
    amount: int


def _adder_machine(executor):
    def add(input, ctx):
        ctx.request_patch({"count": ctx.state.count + input.amount})
        return f"count is now {ctx.current_state.count}"

    node = Node(
        id="adder",
        instructions="Add numbers.",
        state_schema=AState,
        tools={"add": ToolDefinition(name="add", description="Add", input_schema=AddInput, execute=add)},
        initial_state={"count": 0},
    )
    charter = Charter(name="adder", nodes={"adder": node}, executors={"standard": executor})
    return Machine(charter, create_instance(node))


async def test_tool_calls_in_one_response_see_each_other(executor):
    machine = _adder_machine(executor)
    response = ExecutorResponse(
        tool_calls=[
            ToolCall(id="c1", name="updateState", input={"patch": {"count": 10}}),
            ToolCall(id="c2", name="add", input={"amount": 1}),
            ToolCall(id="c3", name="add", input={"amount": 2}),
        ],
        stop_reason=StopReason.TOOL_USE,
    )
    executor.queue(response, reply("Done"))

    steps = await run_machine_to_completion(machine, "add please")

    results = [m.content for m in steps[0].messages if m.role == "tool"]
    assert results == ["State updated", "count is now 11", "count is now 13"]
    assert machine.leaf.state.count == 13
    assert steps[0].instance.state == {"count": 13}


class BlockingExecutor(Executor):
    """Never answers; used to cancel a run while inference is pending."""

    def __init__(self):
        self.started = asyncio.Event()

    async def run(self, context: ExecutionContext) -> ExecutorResponse:
        self.started.set()
        await asyncio.Event().wait()


async def test_cancelled_inference_leaves_machine_untouched():
    executor = BlockingExecutor()
    charter = build_ab_charter(executor)
    machine = Machine(charter, create_instance(charter.get_node("A")))
    before = machine.instance

    task = asyncio.create_task(run_machine_to_completion(machine, "hi"))
    await executor.started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert machine.instance is before
    assert machine.history == []
    assert machine.steps == []
