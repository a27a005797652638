"""State machine error hierarchy.

Only programmer and data-corruption errors are raised. Ordinary rule
violations (no such transition, guard failed) come back as
TransitionDenied values and never reach this hierarchy.
"""

from __future__ import annotations


class StateMachineError(Exception):
    """Base exception for all state machine errors."""


class MachineConfigError(StateMachineError):
    """Bad transition table: undeclared state, duplicate (from, event), bad cap."""

    def __init__(self, machine_id: str, message: str) -> None:
        self.machine_id = machine_id
        super().__init__(f"[StateMachine:{machine_id}] {message}")


class SnapshotMismatchError(StateMachineError):
    """Snapshot cannot be restored into this machine.

    Raised when the snapshot belongs to another machine id or names a
    state this machine does not declare.
    """

    def __init__(self, machine_id: str, message: str) -> None:
        self.machine_id = machine_id
        super().__init__(f"[StateMachine:{machine_id}] {message}")
