"""
Execution Layer - Run Loop and Effect Application

Defines the MachineEngine (deterministic run loop), the Executor contract
with its LLM-backed StandardExecutor, and the tool, command and transition
executors that apply a response to the instance tree.
"""

from markov_machines.execution.engine import (
    DialogueControlAction,
    MachineEngine,
    run_machine,
    run_machine_to_completion,
)
from markov_machines.execution.executor import ExecutionContext, Executor, StandardExecutor


__all__ = [
    "DialogueControlAction",
    "ExecutionContext",
    "Executor",
    "MachineEngine",
    "StandardExecutor",
    "run_machine",
    "run_machine_to_completion",
]
