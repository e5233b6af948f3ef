"""
Tool definition generation.

Builds the provider-neutral tool list offered to the model for the active
frame: the built-in `updateState` and transition tools first, then the leaf's
own tools, ancestor tools (nearest first), charter tools and pack tools. A
closer definition shadows a farther one with the same name, mirroring how
calls are resolved in `execution.tools.resolve_tool`.
"""

from typing import Any, Dict, List

from ..domain.charter import Charter
from ..domain.models import ArgumentTransition, ToolDefinition
from ..state.instance import Instance

UPDATE_STATE_TOOL = "updateState"
TRANSITION_TOOL = "transition"
TRANSITION_TOOL_PREFIX = "transition_"

ToolSpec = Dict[str, Any]


def _spec(name: str, description: str, input_schema: Dict[str, Any]) -> ToolSpec:
    return {"name": name, "description": description, "input_schema": input_schema}


def _partial_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    # A patch may carry any subset of the state's fields, at any depth
    partial = dict(schema)
    partial.pop("required", None)
    partial.pop("title", None)
    partial.pop("$defs", None)
    return partial


def _partial_defs(schema: Dict[str, Any]) -> Dict[str, Any]:
    return {name: _partial_schema(definition) for name, definition in schema.get("$defs", {}).items()}


def _tool_spec(tool: ToolDefinition) -> ToolSpec:
    return _spec(tool.name, tool.description, tool.input_schema.model_json_schema())


def is_transition_tool(name: str) -> bool:
    return name == TRANSITION_TOOL or name.startswith(TRANSITION_TOOL_PREFIX)


def generate_tool_definitions(charter: Charter, path: List[Instance]) -> List[ToolSpec]:
    leaf = path[-1]
    node = leaf.node
    tools: List[ToolSpec] = []
    seen = set()

    def add(spec: ToolSpec):
        if spec["name"] not in seen:
            tools.append(spec)
            seen.add(spec["name"])

    # 1. updateState
    state_schema = node.state_schema.model_json_schema()
    update_schema = {
        "type": "object",
        "properties": {"patch": _partial_schema(state_schema)},
        "required": ["patch"],
    }
    # Nested models are referenced as #/$defs/..., resolved from the tool schema root
    if "$defs" in state_schema:
        update_schema["$defs"] = _partial_defs(state_schema)
    add(
        _spec(
            UPDATE_STATE_TOOL,
            "Update the current state with a partial patch. "
            "The patch will be deep-merged with the current state.",
            update_schema,
        )
    )

    # 2. Transitions
    without_args = []
    for name, transition in charter.available_transitions(node).items():
        if isinstance(transition, ArgumentTransition):
            args_schema = transition.arguments.model_json_schema()
            properties = {
                "reason": {"type": "string", "description": "Why you are making this transition"},
                **args_schema.get("properties", {}),
            }
            input_schema = {
                "type": "object",
                "properties": properties,
                "required": ["reason", *args_schema.get("required", [])],
            }
            if "$defs" in args_schema:
                input_schema["$defs"] = args_schema["$defs"]
            add(_spec(f"{TRANSITION_TOOL_PREFIX}{name}", transition.description, input_schema))
        else:
            without_args.append(name)

    if without_args:
        add(
            _spec(
                TRANSITION_TOOL,
                "Transition to a different node. Use this when the current task is "
                "complete or you need different capabilities.",
                {
                    "type": "object",
                    "properties": {
                        "to": {
                            "type": "string",
                            "enum": without_args,
                            "description": "The name of the transition to take",
                        },
                        "reason": {
                            "type": "string",
                            "description": "Why you are making this transition",
                        },
                    },
                    "required": ["to", "reason"],
                },
            )
        )

    # 3. Leaf tools, then ancestors nearest first
    for instance in reversed(path):
        for tool in instance.node.tools.values():
            add(_tool_spec(tool))

    # 4. Charter tools
    for tool in charter.tools.values():
        add(_tool_spec(tool))

    # 5. Pack tools
    for pack in node.packs:
        for tool in pack.tools.values():
            add(_tool_spec(tool))

    return tools
