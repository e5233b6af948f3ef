"""
Demo charter.

A small reference agent exercising every feature of the runtime:

    name_gate --toGuide(name)--> guide
    guide --spawn--> ping_demo       (commands that bypass the model)
    guide --spawn--> favorites_demo  (node state updated by a tool)
    guide --spawn--> memory_demo     (the shared memory pack)
    every demo --returnToGuide--> guide (cede with a summary)
    guide --sayGoodbye--> end of session (cede from the root)
"""

from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field

from ..domain.charter import Charter
from ..domain.models import (
    ArgumentTransition,
    CodeTransition,
    CommandDefinition,
    CommandValue,
    Node,
    Pack,
    ToolDefinition,
    ToolReply,
)
from ..execution.executor import Executor
from ..execution.schemas.state_machine import cede, move_to, spawn

DEMO_CHARTER_NAME = "demo-assistant"
INITIAL_NODE_ID = "name_gate"


class EmptyInput(BaseModel):
    pass


class EmptyState(BaseModel):
    pass


# ==============================================================================
# Memory pack
# ==============================================================================


class MemoryState(BaseModel):
    memories: Dict[str, str] = Field(default_factory=dict)


class SetMemoryInput(BaseModel):
    key: str = Field(..., description="A short identifier for this memory")
    value: str = Field(..., description="The content to remember")


class GetMemoryInput(BaseModel):
    key: str = Field(..., description="The key of the memory to retrieve")


def _set_memory(input: SetMemoryInput, ctx) -> str:
    ctx.request_patch({"memories": {input.key: input.value}})
    return f"Memory stored: \"{input.key}\" = \"{input.value}\""


def _get_memory(input: GetMemoryInput, ctx) -> str:
    value = ctx.state.memories.get(input.key)
    if value is None:
        return f"No memory found for key: \"{input.key}\""
    return f"Memory \"{input.key}\": {value}"


def _list_memories(input: EmptyInput, ctx) -> str:
    entries = ctx.state.memories
    if not entries:
        return "No memories stored yet."
    return "\n".join(f"- {key}: {value}" for key, value in entries.items())


def _count_memories(input: EmptyInput, ctx) -> CommandValue:
    return CommandValue(value=len(ctx.state.memories))


memory_pack = Pack(
    name="memory",
    description="Simple key-value memory store for persisting information across conversations",
    state_schema=MemoryState,
    tools={
        "setMemory": ToolDefinition(
            name="setMemory",
            description="Store a memory with the given key and value",
            input_schema=SetMemoryInput,
            execute=_set_memory,
        ),
        "getMemory": ToolDefinition(
            name="getMemory",
            description="Retrieve a memory by its key",
            input_schema=GetMemoryInput,
            execute=_get_memory,
        ),
        "listMemories": ToolDefinition(
            name="listMemories",
            description="List all stored memories",
            input_schema=EmptyInput,
            execute=_list_memories,
        ),
    },
    commands={
        "countMemories": CommandDefinition(
            name="countMemories",
            description="Number of stored memories",
            input_schema=EmptyInput,
            execute=_count_memories,
        ),
    },
    initial_state={"memories": {}},
)


# ==============================================================================
# Name gate (root)
# ==============================================================================


class ToGuideArgs(BaseModel):
    name: str = Field(..., description="The name the user wants to talk to")


name_gate_node = Node(
    id="name_gate",
    instructions=(
        "Ask: \"Who do you want to talk to?\"\n\n"
        "Keep asking this exact question until the user provides a name. "
        "Do not explain anything else.\n\n"
        "Once they give a name, use the toGuide transition with that name."
    ),
    state_schema=EmptyState,
    transitions={
        "toGuide": ArgumentTransition(
            description="Transition to the guide node with the given name",
            arguments=ToGuideArgs,
            execute=lambda state, ctx: move_to("guide", {"name": ctx.args.name}),
        ),
    },
    initial_state={},
)


# ==============================================================================
# Guide
# ==============================================================================


class GuideState(BaseModel):
    name: str


guide_node = Node(
    id="guide",
    instructions=(
        "You guide the markov-machines demo. Your name is in your state; greet the "
        "user with it when you first become active.\n\n"
        "Three demos available:\n"
        "1. Memory Demo - Pack system, persistent key-value storage\n"
        "2. Ping Demo - Commands that bypass the model\n"
        "3. Favorites Demo - Node State with live updates\n\n"
        "Spawn the appropriate demo node when requested. When a child cedes back, "
        "you receive their summary."
    ),
    state_schema=GuideState,
    packs=[memory_pack],
    transitions={
        "spawnMemoryDemo": CodeTransition(
            description="Spawn the Memory Demo node to showcase the Pack system",
            execute=lambda state, ctx: spawn("memory_demo", {}),
        ),
        "spawnPingDemo": CodeTransition(
            description="Spawn the Ping Demo node to showcase Commands",
            execute=lambda state, ctx: spawn("ping_demo", {}),
        ),
        "spawnFavoritesDemo": CodeTransition(
            description="Spawn the Favorites Demo node to showcase Node State",
            execute=lambda state, ctx: spawn("favorites_demo"),
        ),
        "sayGoodbye": CodeTransition(
            description="Say goodbye and end the conversation",
            execute=lambda state, ctx: cede(f"{state.name} says goodbye!"),
        ),
    },
)


# ==============================================================================
# Demos
# ==============================================================================


def _ping(input: EmptyInput, ctx) -> ToolReply:
    return ToolReply(llm_message="pong", user_message="pong")


ping_demo_node = Node(
    id="ping_demo",
    instructions=(
        "You are demonstrating Commands. Commands are operations the user runs "
        "directly; they bypass the model entirely and execute instantly.\n\n"
        "Tell the user to try the \"ping\" command. It answers \"pong\" without "
        "any model call.\n\n"
        "When done demonstrating, use returnToGuide to go back."
    ),
    state_schema=EmptyState,
    commands={
        "ping": CommandDefinition(
            name="ping",
            description="Returns pong instantly (bypasses the model)",
            input_schema=EmptyInput,
            execute=_ping,
        ),
    },
    transitions={"returnToGuide": "returnToGuide"},
    initial_state={},
)


class FavoritesState(BaseModel):
    airplane: Optional[str] = None
    ungulate: Optional[str] = None
    mathematician: Optional[str] = None


class UpdateFavoriteInput(BaseModel):
    category: Literal["airplane", "ungulate", "mathematician"] = Field(
        ..., description="Which category to update"
    )
    value: str = Field(..., description="The user's favorite in this category")


def _update_favorite(input: UpdateFavoriteInput, ctx) -> str:
    ctx.request_patch({input.category: input.value})
    return f"Updated favorite {input.category}: {input.value}"


def _summarize_favorites(state: FavoritesState, ctx):
    collected = [
        f"{category}: {value}"
        for category, value in state.model_dump().items()
        if value
    ]
    if collected:
        return cede(f"Favorites collected: {', '.join(collected)}")
    return cede("No favorites collected this time.")


favorites_demo_node = Node(
    id="favorites_demo",
    instructions=(
        "You are demonstrating Node State. Your state tracks the user's favorites "
        "in three categories: airplane, ungulate (hooved mammal) and mathematician.\n\n"
        "Ask about them one at a time in a natural way and record each answer with "
        "the updateFavorite tool.\n\n"
        "Once you have all three (or the user wants to stop), use returnToGuide."
    ),
    state_schema=FavoritesState,
    tools={
        "updateFavorite": ToolDefinition(
            name="updateFavorite",
            description="Update one of the user's favorite things",
            input_schema=UpdateFavoriteInput,
            execute=_update_favorite,
        ),
    },
    transitions={
        "returnToGuide": CodeTransition(
            description="Return to the guide with a summary of collected favorites",
            execute=_summarize_favorites,
        ),
    },
    initial_state={},
)


memory_demo_node = Node(
    id="memory_demo",
    instructions=(
        "You are demonstrating Packs. The memory pack is shared by every node that "
        "lists it, so whatever you store here stays available after you return.\n\n"
        "Offer to remember facts about the user with setMemory, and recall them "
        "with getMemory or listMemories.\n\n"
        "When done demonstrating, use returnToGuide to go back."
    ),
    state_schema=EmptyState,
    packs=[memory_pack],
    transitions={"returnToGuide": "returnToGuide"},
    initial_state={},
)


def build_demo_charter(executor: Executor) -> Charter:
    """Assemble the demo charter around the given standard executor."""
    return Charter(
        name=DEMO_CHARTER_NAME,
        nodes={
            node.id: node
            for node in (
                name_gate_node,
                guide_node,
                ping_demo_node,
                favorites_demo_node,
                memory_demo_node,
            )
        },
        executors={"standard": executor},
        transitions={
            "returnToGuide": CodeTransition(
                description="Return to the guide once the demo is complete",
                execute=lambda state, ctx: cede("Demo complete."),
            ),
        },
        packs=[memory_pack],
    )
