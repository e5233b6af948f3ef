"""
State Layer - Schema Validation

The single gate every value crossing a boundary passes through before it is
trusted: node state, tool and command input, transition arguments and
deserialized snapshots. Schemas are pydantic models; a value is either fully
valid (and returned as the typed model) or rejected with every violation
listed by path.
"""

from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..exceptions import InputValidationError, StateValidationError

T = TypeVar("T", bound=BaseModel)


def format_validation_error(error: ValidationError) -> str:
    """Render a pydantic ValidationError as `path: message` pairs."""
    parts = []
    for err in error.errors():
        path = _format_location(err.get("loc", ()))
        message = err.get("msg", "invalid value")
        parts.append(f"{path}: {message}" if path else message)
    return "; ".join(parts)


def _format_location(loc) -> str:
    path = ""
    for item in loc:
        if isinstance(item, int):
            path += f"[{item}]"
        elif path:
            path += f".{item}"
        else:
            path = str(item)
    return path


def _coerce(value: Any) -> Any:
    # Typed models are re-validated from their dump so a model of a
    # different (or outdated) schema cannot slip through unchecked.
    if isinstance(value, BaseModel):
        return value.model_dump()
    return value


def validate_state(schema: Type[T], value: Any, owner: Optional[str] = None) -> T:
    """
    Validate a state value against a schema.

    Args:
        schema: The pydantic model describing the state.
        value: A dict (or model) to validate.
        owner: Node id or pack name, used in the error message.

    Returns:
        The typed model instance.

    Raises:
        StateValidationError: if the value does not satisfy the schema.
    """
    try:
        return schema.model_validate(_coerce(value))
    except ValidationError as e:
        raise StateValidationError(owner, format_validation_error(e)) from e


def validate_input(schema: Type[T], value: Any) -> T:
    """Validate raw tool/command/transition arguments."""
    if value is None:
        value = {}
    try:
        return schema.model_validate(_coerce(value))
    except ValidationError as e:
        raise InputValidationError(format_validation_error(e)) from e
