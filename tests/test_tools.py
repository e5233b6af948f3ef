"""Tests for tool execution, resolution and tool definitions."""

from pydantic import BaseModel

from markov_machines.domain.charter import Charter
from markov_machines.domain.models import Node, ToolDefinition, ToolReply
from markov_machines.execution.tool_definitions import (
    TRANSITION_TOOL,
    UPDATE_STATE_TOOL,
    generate_tool_definitions,
)
from markov_machines.execution.tools import ToolContext, ToolScope, execute_tool, resolve_tool
from markov_machines.state.instance import create_instance, get_instance_path, push_child

from conftest import AState


class Address(BaseModel):
    city: str
    street: str


class Profile(BaseModel):
    name: str
    address: Address


class AddInput(BaseModel):
    amount: int


def _add_tool(calls):
    def add(input: AddInput, ctx: ToolContext) -> str:
        calls.append(input.amount)
        ctx.request_patch({"count": ctx.state.count + input.amount})
        return f"count is now {ctx.current_state.count}"

    return ToolDefinition(name="add", description="Add", input_schema=AddInput, execute=add)


async def test_invalid_input_never_reaches_the_handler():
    calls = []

    outcome = await execute_tool(_add_tool(calls), {"amount": "lots"}, AState(), AState)

    assert outcome.is_error
    assert outcome.result.startswith("Invalid tool input:")
    assert "amount" in outcome.result
    assert calls == []


async def test_patch_is_returned_as_new_state():
    calls = []
    state = AState(count=1)

    outcome = await execute_tool(_add_tool(calls), {"amount": 2}, state, AState)

    assert not outcome.is_error
    assert outcome.result == "count is now 3"
    assert outcome.state.count == 3
    assert state.count == 1


async def test_handler_exception_becomes_error_result():
    def boom(input, ctx):
        raise RuntimeError("disk full")

    tool = ToolDefinition(name="boom", description="", input_schema=AddInput, execute=boom)

    outcome = await execute_tool(tool, {"amount": 1}, AState(), AState)

    assert outcome.is_error
    assert outcome.result == "Tool execution error: disk full"
    assert outcome.state is None


async def test_invalid_patch_fails_the_call():
    def bad_patch(input, ctx):
        ctx.request_patch({"count": "many"})
        return "unreachable"

    tool = ToolDefinition(name="bad", description="", input_schema=AddInput, execute=bad_patch)

    outcome = await execute_tool(tool, {"amount": 1}, AState(), AState)

    assert outcome.is_error
    assert outcome.state is None


async def test_tool_reply_splits_channels():
    async def both(input, ctx):
        return ToolReply(llm_message="for the model", user_message="for the user")

    tool = ToolDefinition(name="both", description="", input_schema=AddInput, execute=both)

    outcome = await execute_tool(tool, {"amount": 1}, AState(), AState)

    assert outcome.result == "for the model"
    assert outcome.user_message == "for the user"


async def test_non_string_results_are_json_encoded():
    tool = ToolDefinition(
        name="data", description="", input_schema=AddInput, execute=lambda i, c: {"n": i.amount}
    )

    outcome = await execute_tool(tool, {"amount": 4}, AState(), AState)

    assert outcome.result == '{"n": 4}'


def test_resolution_prefers_the_closest_definition(demo_charter):
    guide = create_instance(demo_charter.get_node("guide"), {"name": "Ada"})
    favorites = create_instance(demo_charter.get_node("favorites_demo"))
    path = get_instance_path(push_child(guide, favorites))

    resolved = resolve_tool(demo_charter, path, "updateFavorite")
    assert resolved.scope == ToolScope.NODE
    assert resolved.instance_id == path[-1].id

    # The guide's memory pack is not listed by favorites_demo
    assert resolve_tool(demo_charter, path, "setMemory") is None
    assert resolve_tool(demo_charter, path[:1], "setMemory").scope == ToolScope.PACK


def test_tool_definitions_for_name_gate(demo_charter):
    path = [create_instance(demo_charter.get_node("name_gate"))]

    tools = generate_tool_definitions(demo_charter, path)
    names = [tool["name"] for tool in tools]

    assert names == [UPDATE_STATE_TOOL, "transition_toGuide"]
    to_guide = tools[1]["input_schema"]
    assert to_guide["required"] == ["reason", "name"]
    assert "name" in to_guide["properties"]


def test_tool_definitions_for_guide(demo_charter):
    path = [create_instance(demo_charter.get_node("guide"), {"name": "Ada"})]

    tools = {tool["name"]: tool for tool in generate_tool_definitions(demo_charter, path)}

    assert set(tools) == {UPDATE_STATE_TOOL, TRANSITION_TOOL, "setMemory", "getMemory", "listMemories"}
    assert tools[TRANSITION_TOOL]["input_schema"]["properties"]["to"]["enum"] == [
        "spawnMemoryDemo",
        "spawnPingDemo",
        "spawnFavoritesDemo",
        "sayGoodbye",
    ]
    patch_schema = tools[UPDATE_STATE_TOOL]["input_schema"]["properties"]["patch"]
    assert "required" not in patch_schema


def test_update_state_schema_resolves_nested_models(executor):
    node = Node(id="profile", instructions="Collect a profile.", state_schema=Profile)
    charter = Charter(name="profiles", nodes={"profile": node}, executors={"standard": executor})
    instance = create_instance(node, {"name": "Ada", "address": {"city": "London", "street": "Baker"}})

    tools = {tool["name"]: tool for tool in generate_tool_definitions(charter, [instance])}
    schema = tools[UPDATE_STATE_TOOL]["input_schema"]

    patch = schema["properties"]["patch"]
    assert "$defs" not in patch
    assert patch["properties"]["address"]["$ref"] == "#/$defs/Address"
    # Nested patches are deep-merged, so no nested field is required either
    assert set(schema["$defs"]["Address"]["properties"]) == {"city", "street"}
    assert "required" not in schema["$defs"]["Address"]
