"""
State Layer - Machine

The Machine is the runtime container for one conversation session: the shared
charter, the root of the instance tree, the conversation history, the pack
states and the append-only list of Steps. The tree, history, pack states and
steps are its only mutable parts, and they change only through `commit`.
A machine whose root ceded is `finished` and is never run again.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel

from ..domain.charter import Charter
from .instance import Instance, get_active_instance, get_instance_path
from .models import Message, Step, YieldReason
from .validation import validate_state

logger = logging.getLogger(__name__)


class Machine:
    def __init__(
        self,
        charter: Charter,
        instance: Instance,
        history: Optional[List[Message]] = None,
        pack_states: Optional[Mapping[str, Any]] = None,
        finished: bool = False,
    ):
        """
        Raises:
            UnknownNodeError: a frame runs a node the charter does not register.
            UnknownExecutorError: a frame's executor is not in the charter.
            StateValidationError: a pack state does not fit its schema.
        """
        self.charter = charter
        self.instance = instance
        self.history: List[Message] = list(history or [])
        self.pack_states: Dict[str, BaseModel] = self._init_pack_states(pack_states or {})
        self.steps: List[Step] = []
        # Set once the root frame cedes; the tree is kept for inspection only
        self.finished = finished
        self._validate_tree(instance)

    def _validate_tree(self, root: Instance):
        for instance in get_instance_path(root):
            self.charter.resolve_node(instance.node)
            self.charter.get_executor(instance.executor_name, node_id=instance.node.id)

    def _init_pack_states(self, given: Mapping[str, Any]) -> Dict[str, BaseModel]:
        states: Dict[str, BaseModel] = {}
        for name in given:
            self.charter.get_pack(name)
        for pack in self.charter.packs:
            if pack.name in given:
                states[pack.name] = validate_state(pack.state_schema, given[pack.name], owner=pack.name)
            elif pack.initial_state is not None:
                states[pack.name] = pack.initial_state.model_copy(deep=True)
        return states

    @property
    def leaf(self) -> Instance:
        return get_active_instance(self.instance)

    def commit(
        self,
        instance: Instance,
        pack_states: Dict[str, BaseModel],
        messages: List[Message],
        step: Optional[Step] = None,
    ):
        """
        Publish the result of one fully applied iteration.

        Nothing in here awaits, so the tree, history and steps always move
        together.
        """
        self._validate_tree(instance)
        self.instance = instance
        self.pack_states = dict(pack_states)
        self.history.extend(messages)
        if step is not None:
            self.steps.append(step)
            if step.yield_reason == YieldReason.END_SESSION:
                self.finished = True

    def __repr__(self) -> str:
        return f"Machine(charter={self.charter.name!r}, leaf={self.leaf.node.id!r}, steps={len(self.steps)})"
