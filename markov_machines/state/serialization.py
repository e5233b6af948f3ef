"""
State Layer - Serialization

Converts a live instance tree into its portable form (node identifiers plus
plain JSON state) and reconstructs it against the *current* charter. Every
level is re-validated on the way back in, so a stored session either resumes
completely against today's schemas or not at all.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from ..domain.charter import Charter
from ..exceptions import StructuralError, UnknownNodeError
from .instance import Instance
from .machine import Machine
from .models import Message, PortableInstance
from .validation import format_validation_error, validate_state

logger = logging.getLogger(__name__)


def serialize_instance(instance: Instance, charter: Optional[Charter] = None) -> PortableInstance:
    """
    Portable form of `instance` and its descendants.

    With a charter, every node must be the object registered under its id.
    """
    if charter is not None and charter.nodes.get(instance.node.id) is not instance.node:
        raise UnknownNodeError(instance.node.id, charter.nodes.keys())
    return PortableInstance(
        node=instance.node.id,
        state=instance.state.model_dump(mode="json"),
        child=serialize_instance(instance.child, charter) if instance.child else None,
        id=instance.id,
        executor=instance.executor,
    )


def _to_portable(value: Union[PortableInstance, Mapping[str, Any]]) -> PortableInstance:
    if isinstance(value, PortableInstance):
        return value
    try:
        return PortableInstance.model_validate(value)
    except ValidationError as e:
        raise StructuralError(f"Malformed instance snapshot: {format_validation_error(e)}") from e


def deserialize_instance(
    charter: Charter, portable: Union[PortableInstance, Mapping[str, Any]]
) -> Instance:
    """
    Rebuild a live tree. Node ids resolve against `charter` and every state is
    validated against the node's current schema.

    Raises:
        UnknownNodeError: a node id is not registered.
        StateValidationError: a stored state no longer fits its schema.
    """
    portable = _to_portable(portable)
    node = charter.get_node(portable.node)
    child = deserialize_instance(charter, portable.child) if portable.child else None
    kwargs = {"id": portable.id} if portable.id else {}
    if portable.executor is not None:
        charter.get_executor(portable.executor, node_id=node.id)
    return Instance(
        node=node,
        state=portable.state,
        child=child,
        executor=portable.executor,
        **kwargs,
    )


# ==============================================================================
# Whole machine
# ==============================================================================


class SerializedMachine(BaseModel):
    """Everything needed to resume a machine after a restart."""
    instance: PortableInstance
    history: List[Message] = Field(default_factory=list)
    pack_states: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    finished: bool = False


def serialize_pack_states(pack_states: Mapping[str, BaseModel]) -> Dict[str, Dict[str, Any]]:
    return {name: state.model_dump(mode="json") for name, state in pack_states.items()}


def deserialize_pack_states(
    charter: Charter, data: Mapping[str, Any]
) -> Dict[str, BaseModel]:
    states = {}
    for name, value in data.items():
        pack = charter.get_pack(name)
        states[name] = validate_state(pack.state_schema, value, owner=pack.name)
    return states


def serialize_machine(machine: Machine) -> SerializedMachine:
    return SerializedMachine(
        instance=serialize_instance(machine.instance, machine.charter),
        history=list(machine.history),
        pack_states=serialize_pack_states(machine.pack_states),
        finished=machine.finished,
    )


def deserialize_machine(
    charter: Charter, data: Union[SerializedMachine, Mapping[str, Any]]
) -> Machine:
    if not isinstance(data, SerializedMachine):
        try:
            data = SerializedMachine.model_validate(data)
        except ValidationError as e:
            raise StructuralError(f"Malformed machine snapshot: {format_validation_error(e)}") from e

    machine = Machine(
        charter=charter,
        instance=deserialize_instance(charter, data.instance),
        history=data.history,
        pack_states=deserialize_pack_states(charter, data.pack_states),
        finished=data.finished,
    )
    logger.debug(f"Deserialized machine for charter '{charter.name}'")
    return machine
