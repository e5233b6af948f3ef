"""
Prompt building for node execution.

Assembles the system prompt for the active frame: node instructions, current
state, available transitions, the ancestor chain, active pack states, a
pending "sub-task finished" notice and the step-limit warning.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel

from ...domain.charter import Charter
from ...domain.models import Node, Transition
from ...state.instance import Instance
from .loader import render
from .templates import Template

logger = logging.getLogger(__name__)

ANCESTOR_SUMMARY_LENGTH = 100


@dataclass(frozen=True)
class PromptOptions:
    """Run-loop context handed to every system prompt builder."""
    current_step: Optional[int] = None
    max_steps: Optional[int] = None
    cede_message: Optional[str] = None


def build_step_warning(current_step: Optional[int], max_steps: Optional[int]) -> Optional[str]:
    """Urgency notice as the run loop approaches its step limit."""
    if not current_step or not max_steps:
        return None

    remaining = max_steps - current_step
    if remaining <= 0:
        return (
            "CRITICAL: This is your FINAL step. You MUST respond to the user now "
            "with whatever progress you have made. Do not use any tools."
        )
    if remaining == 1:
        return (
            "WARNING: You have only 1 step remaining after this one. "
            "Wrap up your work and prepare to respond to the user."
        )
    if remaining == 2:
        return f"NOTICE: You have {remaining} steps remaining. Start wrapping up your work soon."
    return None


def build_system_prompt(
    node: Node,
    state: BaseModel,
    transitions: Mapping[str, Transition],
    ancestors: List[Instance],
    pack_states: Mapping[str, BaseModel],
    cede_message: Optional[str] = None,
    current_step: Optional[int] = None,
    max_steps: Optional[int] = None,
) -> str:
    """
    Render the system prompt for `node`.

    Args:
        ancestors: Frames above the active one, root first.
        pack_states: Current state of every pack, keyed by pack name. Only the
            packs the node lists are shown.
        cede_message: Result handed back by a child that just ceded.
    """
    ancestor_context: List[Dict[str, Any]] = []
    for i, ancestor in enumerate(ancestors):
        summary = ancestor.node.instructions[:ANCESTOR_SUMMARY_LENGTH]
        if len(ancestor.node.instructions) > ANCESTOR_SUMMARY_LENGTH:
            summary += "..."
        ancestor_context.append(
            {
                "depth": len(ancestors) - i,
                "node_id": ancestor.node.id,
                "summary": summary,
                "state": ancestor.state,
            }
        )

    packs = [
        {
            "name": pack.name,
            "description": pack.description,
            "state": pack_states.get(pack.name),
        }
        for pack in node.packs
    ]

    prompt = render(
        Template.SYSTEM_PROMPT,
        instructions=node.instructions,
        state=state,
        transitions=[(name, t.description) for name, t in transitions.items()],
        ancestors=ancestor_context,
        packs=packs,
        cede_message=cede_message,
        step_warning=build_step_warning(current_step, max_steps),
    )

    logger.debug(f"Built system prompt for node {node.id}")
    return prompt


def render_system_prompt(
    charter: Charter,
    node: Node,
    state: BaseModel,
    ancestors: List[Instance],
    pack_states: Mapping[str, BaseModel],
    options: Optional[PromptOptions] = None,
) -> str:
    """
    System prompt for the active frame, through the charter's own builder
    when it declares one and the default template otherwise.
    """
    options = options or PromptOptions()
    if charter.build_system_prompt is not None:
        return charter.build_system_prompt(
            charter,
            node,
            state.model_copy(deep=True),
            list(ancestors),
            {name: value.model_copy(deep=True) for name, value in pack_states.items()},
            options,
        )

    return build_system_prompt(
        node=node,
        state=state,
        transitions=charter.available_transitions(node),
        ancestors=ancestors,
        pack_states=pack_states,
        cede_message=options.cede_message,
        current_step=options.current_step,
        max_steps=options.max_steps,
    )
