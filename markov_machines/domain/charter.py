"""
Domain Layer - Charter Registry

The Charter is the static, immutable definition of one kind of agent: its
nodes, its cross-cutting transitions and tools, its packs and the named
executors nodes run on. Construction is the single structural validation gate;
after that the charter is read-only and safe to share across sessions.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Union

from ..exceptions import StructuralError, UnknownExecutorError, UnknownNodeError, UnknownPackError
from .models import Node, Pack, ToolDefinition, Transition, _check_names

if TYPE_CHECKING:
    from ..execution.executor import Executor

logger = logging.getLogger(__name__)

# (charter, node, state, ancestors, pack_states, options) -> system prompt text
SystemPromptBuilder = Callable[..., str]


@dataclass(frozen=True, eq=False)
class Charter:
    """
    Attributes:
        name: Human-readable agent name.
        nodes: Node id -> Node.
        executors: Executor name -> executor implementation.
        transitions: Charter-level transitions that nodes reference by name.
        tools: Charter-level tools, visible from every node; they operate on
            the active node's state.
        packs: Every pack any node may list.
        build_system_prompt: Replaces the default system prompt for every
            node. Called as `(charter, node, state, ancestors, pack_states,
            options)` where `options` is a PromptOptions.
    """
    name: str
    nodes: Dict[str, Node]
    executors: Dict[str, "Executor"]
    transitions: Dict[str, Transition] = field(default_factory=dict)
    tools: Dict[str, ToolDefinition] = field(default_factory=dict)
    packs: List[Pack] = field(default_factory=list)
    build_system_prompt: Optional[SystemPromptBuilder] = None

    def __post_init__(self):
        _check_names("Charter tool", self.tools)

        for key, node in self.nodes.items():
            if node.id != key:
                raise StructuralError(
                    f"Node registered as \"{key}\" declares id \"{node.id}\""
                )
            if node.executor not in self.executors:
                raise UnknownExecutorError(node.executor, self.executors.keys(), node_id=node.id)
            for pack in node.packs:
                if self._find_pack(pack.name) is not pack:
                    raise UnknownPackError(pack.name)
            for name, transition in node.transitions.items():
                if isinstance(transition, str) and transition not in self.transitions:
                    raise StructuralError(
                        f"Node \"{node.id}\" references unknown charter transition "
                        f"\"{transition}\" as \"{name}\""
                    )

        names = [pack.name for pack in self.packs]
        if len(names) != len(set(names)):
            raise StructuralError(f"Duplicate pack names in charter \"{self.name}\"")

        logger.debug(
            f"Charter '{self.name}' built: {len(self.nodes)} nodes, "
            f"{len(self.executors)} executors, {len(self.packs)} packs"
        )

    # ==========================================================================
    # Lookups
    # ==========================================================================

    def get_node(self, node_id: str) -> Node:
        node = self.nodes.get(node_id)
        if node is None:
            raise UnknownNodeError(node_id, self.nodes.keys())
        return node

    def resolve_node(self, target: Union[Node, str]) -> Node:
        """Resolve a node reference, insisting on the registered object."""
        if isinstance(target, str):
            return self.get_node(target)
        if self.nodes.get(target.id) is not target:
            raise UnknownNodeError(target.id, self.nodes.keys())
        return target

    def get_executor(self, name: str, node_id: Optional[str] = None) -> "Executor":
        executor = self.executors.get(name)
        if executor is None:
            raise UnknownExecutorError(name, self.executors.keys(), node_id=node_id)
        return executor

    def _find_pack(self, name: str) -> Optional[Pack]:
        return next((pack for pack in self.packs if pack.name == name), None)

    def get_pack(self, name: str) -> Pack:
        pack = self._find_pack(name)
        if pack is None:
            raise UnknownPackError(name)
        return pack

    def available_transitions(self, node: Node) -> Dict[str, Transition]:
        """
        Every transition visible from `node`, with charter refs resolved.

        A node-local definition always wins over a charter transition that
        shares its name.
        """
        available: Dict[str, Transition] = {}
        for name, transition in node.transitions.items():
            if isinstance(transition, str):
                transition = self.transitions[transition]
            elif name in self.transitions:
                logger.debug(
                    f"Node '{node.id}' transition '{name}' shadows the charter transition"
                )
            available[name] = transition
        return available

    def resolve_transition(self, node: Node, name: str) -> Optional[Transition]:
        return self.available_transitions(node).get(name)
