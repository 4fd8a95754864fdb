"""
NIBBLEPOW Errors
Failure taxonomy for the search client.
"""


class MinerError(Exception):
    """Base class for search client errors."""
    pass


class TransientNetworkError(MinerError):
    """A fetch or submit against the coordinator failed and may be retried."""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class MalformedJobError(MinerError):
    """
    The job descriptor cannot be parsed or encoded.

    Fatal to the current cycle only; the coordinator waits for new job text.
    """
    pass


class InvariantViolation(MinerError):
    """Internal coordination bug (workers lost, stuck or out of cycle)."""
    pass
