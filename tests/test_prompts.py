"""Tests for system prompt rendering and the OpenAI message mapping."""

import json

from markov_machines.domain.charter import Charter
from markov_machines.domain.models import Node
from markov_machines.execution.engine import run_machine_to_completion
from markov_machines.execution.executor import extract_transition, to_chat_messages
from markov_machines.execution.prompts import (
    PromptOptions,
    build_step_warning,
    build_system_prompt,
    render_system_prompt,
)
from markov_machines.schemas.responses import ExecutorResponse, ToolCall
from markov_machines.state.instance import create_instance
from markov_machines.state.machine import Machine
from markov_machines.state.models import Message, MessageKind, ToolCallRecord

from conftest import AState, reply


def test_prompt_sections(demo_charter):
    guide = demo_charter.get_node("guide")
    state = create_instance(guide, {"name": "Ada"}).state

    prompt = build_system_prompt(
        node=guide,
        state=state,
        transitions=demo_charter.available_transitions(guide),
        ancestors=[],
        pack_states={"memory": demo_charter.get_pack("memory").initial_state},
        cede_message="Favorites collected: airplane: A380",
    )

    assert prompt.startswith("You guide the markov-machines demo.")
    assert '"name": "Ada"' in prompt
    assert "- **sayGoodbye**: Say goodbye and end the conversation" in prompt
    assert "## Active Packs" in prompt
    assert "## Ancestor Context" not in prompt
    assert "Result: Favorites collected: airplane: A380" in prompt


def test_prompt_lists_ancestors_and_no_transitions(demo_charter):
    guide = create_instance(demo_charter.get_node("guide"), {"name": "Ada"})
    ping = demo_charter.get_node("ping_demo")

    prompt = build_system_prompt(
        node=ping,
        state=create_instance(ping).state,
        transitions={},
        ancestors=[guide],
        pack_states={},
    )

    assert "## Available Transitions\nNone" in prompt
    assert "### Ancestor 1 (guide):" in prompt
    assert "## Sub-task Finished" not in prompt


def test_step_warning_levels():
    assert build_step_warning(1, 10) is None
    assert build_step_warning(8, 10).startswith("NOTICE")
    assert build_step_warning(9, 10).startswith("WARNING")
    assert build_step_warning(10, 10).startswith("CRITICAL")


def test_extract_transition_keeps_extra_calls():
    response = ExecutorResponse(
        tool_calls=[
            ToolCall(id="1", name="setMemory", input={"key": "k", "value": "v"}),
            ToolCall(id="2", name="transition", input={"to": "sayGoodbye", "reason": "done"}),
            ToolCall(id="3", name="transition_toGuide", input={"reason": "x", "name": "Bo"}),
        ]
    )

    extracted = extract_transition(response)

    assert extracted.transition.name == "sayGoodbye"
    assert extracted.transition.reason == "done"
    assert [call.id for call in extracted.tool_calls] == ["1", "3"]


def test_chat_messages_hide_user_only_entries():
    history = [
        Message(role="user", content="hi"),
        Message(
            role="assistant",
            content="",
            tool_calls=[ToolCallRecord(id="c1", name="ping", input={})],
        ),
        Message(role="tool", tool_call_id="c1", content="pong"),
        Message(role="assistant", content="pong", kind=MessageKind.USER_REPLY),
        Message(role="user", content="/ping", kind=MessageKind.COMMAND),
        Message(role="user", content="done", kind=MessageKind.CEDE),
    ]

    chat = to_chat_messages(history)

    assert [m["role"] for m in chat] == ["user", "assistant", "tool", "user"]
    assert chat[1]["tool_calls"][0]["function"] == {"name": "ping", "arguments": "{}"}
    assert chat[1]["content"] is None
    assert chat[3]["content"] == "[Sub-task result] done"


# ==============================================================================
# Charter-level prompt builders
# ==============================================================================


def _counter_charter(executor, builder=None):
    node = Node(id="counter", instructions="Test node instructions", state_schema=AState, initial_state={})
    return Charter(
        name="counter",
        nodes={"counter": node},
        executors={"standard": executor},
        build_system_prompt=builder,
    )


def test_default_prompt_without_builder(executor):
    charter = _counter_charter(executor)
    node = charter.get_node("counter")

    prompt = render_system_prompt(charter, node, AState(count=0), [], {})

    assert "Test node instructions" in prompt
    assert '"count": 0' in prompt


def test_custom_builder_replaces_the_prompt(executor):
    def builder(charter, node, state, ancestors, pack_states, options):
        return f"CUSTOM PROMPT: {node.instructions} - State: {json.dumps(state.model_dump())}"

    charter = _counter_charter(executor, builder)

    prompt = render_system_prompt(charter, charter.get_node("counter"), AState(count=42), [], {})

    assert prompt == 'CUSTOM PROMPT: Test node instructions - State: {"count": 42}'


def test_custom_builder_receives_every_argument(executor, demo_charter):
    captured = {}

    def builder(charter, node, state, ancestors, pack_states, options):
        captured.update(
            charter=charter, node=node, state=state, ancestors=ancestors,
            pack_states=pack_states, options=options,
        )
        return "test"

    charter = _counter_charter(executor, builder)
    node = charter.get_node("counter")
    ancestor = create_instance(demo_charter.get_node("guide"), {"name": "Ada"})
    pack_states = {"memory": demo_charter.get_pack("memory").initial_state}
    options = PromptOptions(current_step=5, max_steps=10)

    render_system_prompt(charter, node, AState(count=7), [ancestor], pack_states, options)

    assert captured["charter"] is charter
    assert captured["node"] is node
    assert captured["state"] == AState(count=7)
    assert captured["ancestors"] == [ancestor]
    assert captured["pack_states"] == pack_states
    assert captured["options"] == options


async def test_run_loop_sends_the_custom_prompt(executor):
    def builder(charter, node, state, ancestors, pack_states, options):
        return f"{node.id} at step {options.current_step} of {options.max_steps}"

    charter = _counter_charter(executor, builder)
    machine = Machine(charter, create_instance(charter.get_node("counter")))
    executor.queue(reply("Hi"))

    await run_machine_to_completion(machine, "hello", max_steps=4)

    assert executor.contexts[0].system_prompt == "counter at step 1 of 4"
