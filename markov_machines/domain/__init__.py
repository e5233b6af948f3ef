"""
Domain Layer - Static Definitions

Defines the static structure of an agent: Nodes, Tools, Commands, Packs,
Transitions and the Charter that registers them.
"""

from markov_machines.domain.charter import Charter
from markov_machines.domain.models import (
    ArgumentTransition,
    CodeTransition,
    CommandDefinition,
    CommandValue,
    Node,
    Pack,
    ToolDefinition,
    ToolReply,
    TransitionContext,
)

__all__ = [
    "ArgumentTransition",
    "Charter",
    "CodeTransition",
    "CommandDefinition",
    "CommandValue",
    "Node",
    "Pack",
    "ToolDefinition",
    "ToolReply",
    "TransitionContext",
]
