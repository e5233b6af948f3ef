"""
State Layer - Patch Merging

Partial updates are deep-merged into the current state: nested records merge
key by key, everything else (scalars, lists, None) is replaced wholesale.
"""

import copy
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel

from .validation import validate_state

T = TypeVar("T", bound=BaseModel)


def deep_merge(current: Mapping[str, Any], patch: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Merge `patch` into `current` and return a new dict.

    Lists are never merged element-wise. Neither input is mutated.
    """
    result = copy.deepcopy(dict(current))
    for key, value in patch.items():
        existing = result.get(key)
        if isinstance(existing, Mapping) and isinstance(value, Mapping):
            result[key] = deep_merge(existing, value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def merge_state(
    schema: Type[T],
    current: BaseModel,
    patch: Mapping[str, Any],
    owner: Optional[str] = None,
) -> T:
    """Apply a patch to a typed state and re-validate the result."""
    if isinstance(patch, BaseModel):
        patch = patch.model_dump(exclude_unset=True)
    if not isinstance(patch, Mapping):
        raise TypeError(f"State patch must be a mapping, got {type(patch).__name__}")
    merged = deep_merge(current.model_dump(), patch)
    return validate_state(schema, merged, owner=owner)
