"""Error taxonomy for meeting operations.

The API layer maps these to HTTP responses:
- ValidationError -> 400 (user-correctable input problem)
- NotFoundError -> 404
- InvalidStateError -> 409
- MeetingNotLiveError -> 202 ignored (late chunk after stop, benign)

Anything else propagates as a generic server error.
"""

from __future__ import annotations


class MeetingError(Exception):
    """Base class for all domain errors raised by the meeting core."""


class ValidationError(MeetingError):
    """Raised for malformed or missing input."""


class NotFoundError(MeetingError):
    """Raised when a meeting, participant or export record does not exist."""


class InvalidStateError(MeetingError):
    """Raised when an operation is not legal in the meeting's current status."""

    def __init__(self, message: str, status: str | None = None) -> None:
        self.status = status
        super().__init__(message)


class MeetingNotLiveError(InvalidStateError):
    """A chunk arrived for a meeting that has already left ``live``.

    Expected race between recorder buffers and the stop button; callers
    should treat it as a no-op rather than a failure.
    """

    def __init__(self, meeting_id: str, status: str) -> None:
        self.meeting_id = meeting_id
        super().__init__(
            f"Meeting {meeting_id} is not live (status={status})",
            status=status,
        )
