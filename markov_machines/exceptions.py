"""
Core Exceptions

Structural and validation failures raised by the charter, the instance tree,
the serializer and the run loop. Tool-level failures are never raised through
here; they are converted into error tool results by the tool executor.
"""

from typing import Iterable, Optional


class MarkovMachineError(Exception):
    """Base class for every error raised by markov_machines."""


# ==============================================================================
# Structural / Validation (fatal for the operation that triggered them)
# ==============================================================================


class StructuralError(MarkovMachineError):
    """The charter or the instance tree is inconsistent. Always fatal."""


class StateValidationError(StructuralError):
    """A state value failed validation against its owner's schema."""

    def __init__(self, owner: Optional[str], details: str):
        self.owner = owner
        self.details = details
        prefix = f"Invalid state for node \"{owner}\"" if owner else "Invalid state"
        super().__init__(f"{prefix}: {details}")


class UnknownExecutorError(StructuralError):
    def __init__(self, executor_name: str, available: Iterable[str], node_id: Optional[str] = None):
        self.executor_name = executor_name
        self.available = sorted(available)
        where = f" (referenced by node \"{node_id}\")" if node_id else ""
        super().__init__(
            f"Unknown executor \"{executor_name}\"{where}. "
            f"Available executors: {', '.join(self.available) or 'none'}"
        )


class UnknownNodeError(StructuralError):
    def __init__(self, node_id: str, available: Iterable[str]):
        self.node_id = node_id
        self.available = sorted(available)
        super().__init__(
            f"Unknown node \"{node_id}\". Registered nodes: {', '.join(self.available) or 'none'}"
        )


class UnknownPackError(StructuralError):
    def __init__(self, pack_name: str):
        self.pack_name = pack_name
        super().__init__(f"Unknown pack \"{pack_name}\"")


class MissingInitialStateError(StructuralError):
    """MoveTo/Spawn targeted a node without an explicit state or a default."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(
            f"No state given for node \"{node_id}\" and the node declares no initial state"
        )


# ==============================================================================
# Recoverable input errors
# ==============================================================================


class InputValidationError(MarkovMachineError):
    """Raw tool/command/transition arguments failed their input schema."""

    def __init__(self, details: str):
        self.details = details
        super().__init__(details)


class TransitionError(MarkovMachineError):
    """
    A transition call could not produce a result (unknown name, invalid
    arguments, failing handler). Reported back to the model like a tool error.
    """


# ==============================================================================
# Run loop
# ==============================================================================


class InferenceError(MarkovMachineError):
    """The executor capability failed. The iteration left no trace."""


class MachineFinishedError(MarkovMachineError):
    """The root frame already ceded; the machine takes no further turns."""


class MaxStepsExceededError(MarkovMachineError):
    def __init__(self, max_steps: int):
        self.max_steps = max_steps
        super().__init__(f"Max steps ({max_steps}) exceeded")
