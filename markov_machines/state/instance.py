"""
State Layer - Instance Tree

An Instance is one activation of a Node holding its current, validated state.
Instances chain into a call stack through `child`: the root is the outermost
frame and the deepest instance (the leaf) is the one that receives the next
turn.

Instances are immutable. Every change to the tree (a state patch, a move, a
spawn, a cede) builds a new chain from the root down to the changed frame and
shares everything else, so a half-applied change is never observable.
"""

import uuid
from dataclasses import dataclass, field, replace
from typing import Any, List, Optional

from pydantic import BaseModel

from ..domain.models import Node
from ..exceptions import MissingInitialStateError, StructuralError
from .validation import validate_state


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True, eq=False)
class Instance:
    """
    A node activation.

    Attributes:
        node: The Node this frame runs.
        state: Current state, always valid against `node.state_schema`.
        child: The nested sub-dialog frame, if any.
        id: Stable identifier of this activation.
        executor: Per-instance executor override (set through Spawn).
    """
    node: Node
    state: Any
    child: Optional["Instance"] = None
    id: str = field(default_factory=_new_id)
    executor: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(
            self,
            "state",
            validate_state(self.node.state_schema, self.state, owner=self.node.id),
        )

    @property
    def executor_name(self) -> str:
        return self.executor or self.node.executor

    def with_state(self, state: Any) -> "Instance":
        return replace(self, state=state)

    def with_child(self, child: Optional["Instance"]) -> "Instance":
        return replace(self, child=child)

    def __repr__(self) -> str:
        return f"Instance(node={self.node.id!r}, id={self.id!r})"


def create_instance(
    node: Node,
    state: Any = None,
    child: Optional[Instance] = None,
    executor: Optional[str] = None,
) -> Instance:
    """
    Build an Instance, resolving its state: the explicit `state` wins,
    otherwise the node's declared initial state.

    Raises:
        MissingInitialStateError: neither is available.
        StateValidationError: the chosen state does not satisfy the schema.
    """
    if state is None:
        state = node.initial_state
    if state is None:
        raise MissingInitialStateError(node.id)
    if isinstance(state, BaseModel) and state is node.initial_state:
        # Defaults are shared by every activation of the node
        state = state.model_copy(deep=True)
    return Instance(node=node, state=state, child=child, executor=executor)


# ==============================================================================
# Queries
# ==============================================================================


def get_instance_path(root: Instance) -> List[Instance]:
    """Every instance from the root down to the leaf, in order."""
    path = [root]
    while path[-1].child is not None:
        path.append(path[-1].child)
    return path


def get_active_instance(root: Instance) -> Instance:
    """The leaf: the deepest instance, which receives the next turn."""
    return get_instance_path(root)[-1]


def tree_depth(root: Instance) -> int:
    return len(get_instance_path(root))


def find_instance(root: Instance, instance_id: str) -> Optional[Instance]:
    for instance in get_instance_path(root):
        if instance.id == instance_id:
            return instance
    return None


def _path_to(root: Instance, instance_id: str) -> List[Instance]:
    path = []
    for instance in get_instance_path(root):
        path.append(instance)
        if instance.id == instance_id:
            return path
    raise StructuralError(f"Instance \"{instance_id}\" is not part of this tree")


# ==============================================================================
# Rewrites (pure: each returns a new root)
# ==============================================================================


def _rebuild(ancestors: List[Instance], replacement: Optional[Instance]) -> Optional[Instance]:
    """Re-link `replacement` under copies of `ancestors` (root first)."""
    current = replacement
    for ancestor in reversed(ancestors):
        current = ancestor.with_child(current)
    return current


def replace_instance(root: Instance, instance_id: str, replacement: Instance) -> Instance:
    """Swap the instance with `instance_id` (and its subtree) for `replacement`."""
    path = _path_to(root, instance_id)
    return _rebuild(path[:-1], replacement)


def remove_instance(root: Instance, instance_id: str) -> Optional[Instance]:
    """Drop the instance with `instance_id` and its subtree. None if it was the root."""
    path = _path_to(root, instance_id)
    if len(path) == 1:
        return None
    return _rebuild(path[:-1], None)


def replace_leaf(root: Instance, new_leaf: Instance) -> Instance:
    """Replace only the leaf; its ancestors are kept as they are."""
    return replace_instance(root, get_active_instance(root).id, new_leaf)


def push_child(root: Instance, child: Instance) -> Instance:
    """Attach `child` beneath the current leaf. Depth grows by exactly one."""
    leaf = get_active_instance(root)
    return replace_instance(root, leaf.id, leaf.with_child(child))


def pop_leaf(root: Instance) -> Optional[Instance]:
    """Remove the leaf so its parent becomes the leaf. None when the root is popped."""
    return remove_instance(root, get_active_instance(root).id)


def update_instance_state(root: Instance, instance_id: str, state: Any) -> Instance:
    """Commit a new state for one instance (validated by the Instance itself)."""
    target = find_instance(root, instance_id)
    if target is None:
        raise StructuralError(f"Instance \"{instance_id}\" is not part of this tree")
    return replace_instance(root, instance_id, target.with_state(state))
