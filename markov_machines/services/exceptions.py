"""
Service Layer Exceptions

Custom exceptions for the MachineService and related orchestration logic.
"""


class SessionNotFoundError(ValueError):
    """Raised when an operation targets a session that does not exist."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class TurnNotFoundError(ValueError):
    """Raised when a branch point does not exist or belongs to another session."""

    def __init__(self, turn_id: str):
        self.turn_id = turn_id
        super().__init__(f"Turn {turn_id} not found")


class SessionFinishedError(ValueError):
    """Raised when a turn is requested on a session whose root frame ceded."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} has ended")
