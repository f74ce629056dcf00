"""
Engine error taxonomy.

Every hard failure aborts the triggering operation before commit. Court
conflicts are not exceptions: the conflict detector returns them as
structured results with a severity of "warning" or "error".
"""


class EngineError(Exception):
    """Base class for all engine failures"""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EngineError):
    """Malformed input: negative score, bad qualifier count, bad config"""

    status_code = 422


class StateTransitionError(EngineError):
    """A match status move not allowed by the transition table"""

    status_code = 409

    def __init__(self, current: str, attempted: str, message: str = None):
        self.current = current
        self.attempted = attempted
        super().__init__(
            message or f"Illegal match transition: '{current}' -> '{attempted}'"
        )


class CapacityError(EngineError):
    """Court or division already full"""

    status_code = 409


class NotFoundError(EngineError):
    """Missing tournament, division, entry, match or court"""

    status_code = 404


class ConsistencyError(EngineError):
    """A write that would corrupt progressed state (e.g. a knockout winner change after the next match started)"""

    status_code = 409
