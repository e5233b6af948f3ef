"""Tests for the instance tree and transition application."""

import pytest

from markov_machines.exceptions import (
    MissingInitialStateError,
    StateValidationError,
    StructuralError,
    TransitionError,
    UnknownExecutorError,
)
from markov_machines.execution.engine import pending_cede_message
from markov_machines.execution.schemas.state_machine import (
    StateMachineTransition,
    cede,
    move_to,
    spawn,
)
from markov_machines.execution.transitions import apply_transition_result, execute_transition
from markov_machines.state.instance import (
    create_instance,
    find_instance,
    get_active_instance,
    get_instance_path,
    pop_leaf,
    push_child,
    replace_leaf,
    tree_depth,
    update_instance_state,
)
from markov_machines.state.models import Message, MessageKind


def test_create_instance_uses_node_default(ab_charter):
    instance = create_instance(ab_charter.get_node("A"))

    assert instance.state.count == 0
    assert instance.state is not ab_charter.get_node("A").initial_state


def test_create_instance_without_any_state_fails(ab_charter):
    with pytest.raises(MissingInitialStateError):
        create_instance(ab_charter.get_node("B"))


def test_instance_rejects_invalid_state(ab_charter):
    with pytest.raises(StateValidationError):
        create_instance(ab_charter.get_node("B"), {"name": None})


def test_tree_helpers(ab_charter):
    root = create_instance(ab_charter.get_node("A"))
    child = create_instance(ab_charter.get_node("B"), {"name": "kid"})

    tree = push_child(root, child)

    assert root.child is None
    assert tree_depth(tree) == 2
    assert get_active_instance(tree) is child
    assert [i.node.id for i in get_instance_path(tree)] == ["A", "B"]
    assert find_instance(tree, child.id) is child

    popped = pop_leaf(tree)
    assert tree_depth(popped) == 1
    assert popped.id == root.id
    assert pop_leaf(popped) is None


def test_update_state_rebuilds_path_and_keeps_ids(ab_charter):
    root = create_instance(ab_charter.get_node("A"))
    tree = push_child(root, create_instance(ab_charter.get_node("B"), {"name": "x"}))

    updated = update_instance_state(tree, tree.id, {"count": 3})

    assert updated.state.count == 3
    assert updated.id == tree.id
    assert updated.child is tree.child
    assert tree.state.count == 0


def test_update_state_of_foreign_instance_fails(ab_charter):
    root = create_instance(ab_charter.get_node("A"))

    with pytest.raises(StructuralError):
        update_instance_state(root, "missing", {"count": 1})


def test_spawn_grows_depth_by_one(ab_charter):
    root = create_instance(ab_charter.get_node("A"))

    outcome = apply_transition_result(ab_charter, root, spawn("B", {"name": "kid"}))

    assert outcome.transition_type == StateMachineTransition.PUSH
    assert tree_depth(outcome.root) == 2
    assert get_active_instance(outcome.root) is outcome.instance
    assert outcome.root.id == root.id


def test_move_replaces_only_the_leaf(ab_charter):
    root = create_instance(ab_charter.get_node("A"))
    tree = apply_transition_result(ab_charter, root, spawn("B", {"name": "kid"})).root

    outcome = apply_transition_result(ab_charter, tree, move_to("B", {"name": "other"}))

    assert outcome.transition_type == StateMachineTransition.ADVANCE
    assert tree_depth(outcome.root) == 2
    assert outcome.root.id == root.id
    assert get_active_instance(outcome.root).state.name == "other"


def test_cede_pops_to_parent_and_carries_message(ab_charter):
    root = create_instance(ab_charter.get_node("A"))
    tree = apply_transition_result(ab_charter, root, spawn("B", {"name": "kid"})).root

    outcome = apply_transition_result(ab_charter, tree, cede("result"))

    assert outcome.transition_type == StateMachineTransition.POP
    assert outcome.cede_message == "result"
    assert tree_depth(outcome.root) == 1
    assert get_active_instance(outcome.root).id == root.id


def test_cede_from_root_leaves_no_tree(ab_charter):
    root = create_instance(ab_charter.get_node("A"))

    outcome = apply_transition_result(ab_charter, root, cede())

    assert outcome.root is None


def test_move_to_unknown_node_is_structural(ab_charter):
    root = create_instance(ab_charter.get_node("A"))

    with pytest.raises(StructuralError):
        apply_transition_result(ab_charter, root, move_to("Z", {}))


def test_spawn_with_unknown_executor_is_structural(ab_charter):
    root = create_instance(ab_charter.get_node("A"))

    with pytest.raises(UnknownExecutorError):
        apply_transition_result(ab_charter, root, spawn("B", {"name": "x"}, executor="voice"))


async def test_execute_argument_transition(ab_charter):
    root = create_instance(ab_charter.get_node("A"))

    result = await execute_transition(ab_charter, root, "toB", {"name": "x"})
    outcome = apply_transition_result(ab_charter, root, result)

    assert outcome.instance.node.id == "B"
    assert outcome.instance.state.name == "x"


async def test_execute_transition_with_invalid_args(ab_charter):
    root = create_instance(ab_charter.get_node("A"))

    with pytest.raises(TransitionError) as exc:
        await execute_transition(ab_charter, root, "toB", {})

    assert "name" in str(exc.value)


async def test_execute_unknown_transition_lists_available(ab_charter):
    root = create_instance(ab_charter.get_node("A"))

    with pytest.raises(TransitionError) as exc:
        await execute_transition(ab_charter, root, "toC")

    assert "spawnB" in str(exc.value)
    assert "toB" in str(exc.value)


def test_replace_leaf_keeps_ancestors(ab_charter):
    root = create_instance(ab_charter.get_node("A"))
    tree = push_child(root, create_instance(ab_charter.get_node("B"), {"name": "old"}))
    new_leaf = create_instance(ab_charter.get_node("B"), {"name": "new"})

    replaced = replace_leaf(tree, new_leaf)

    assert replaced.id == root.id
    assert replaced.child is new_leaf
    assert tree.child.state.name == "old"


def test_cede_with_messages_marks_them_for_the_parent(ab_charter):
    root = create_instance(ab_charter.get_node("A"))
    tree = apply_transition_result(ab_charter, root, spawn("B", {"name": "kid"})).root
    handed_back = [
        Message(role="user", content="Research complete: tides"),
        Message(role="assistant", content="Three sources found"),
    ]

    outcome = apply_transition_result(ab_charter, tree, cede(handed_back))

    assert [m.kind for m in outcome.cede_messages] == [MessageKind.CEDE, MessageKind.CEDE]
    assert [m.role for m in outcome.cede_messages] == ["user", "assistant"]
    assert outcome.cede_message == "Research complete: tides\nThree sources found"
    assert handed_back[0].kind is None
    assert pending_cede_message(outcome.cede_messages) == outcome.cede_message


def test_cede_cannot_hand_back_tool_messages(ab_charter):
    root = create_instance(ab_charter.get_node("A"))
    tree = apply_transition_result(ab_charter, root, spawn("B", {"name": "kid"})).root

    with pytest.raises(StructuralError):
        apply_transition_result(ab_charter, tree, cede([Message(role="tool", content="x")]))
