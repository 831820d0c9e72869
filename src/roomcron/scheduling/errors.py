"""Scheduling errors.

Every error carries a ``reply``: the text the chat layer sends back to the
requester when the error reaches it.
"""


class SchedulingError(Exception):
    """Base class for scheduling failures."""

    reply = "Something went wrong with that request."

    def __init__(self, message: str, *, reply: str | None = None) -> None:
        super().__init__(message)
        if reply is not None:
            self.reply = reply


class InvalidPattern(SchedulingError):
    """Pattern is neither a valid cron expression nor a parseable instant."""

    def __init__(self, pattern: str) -> None:
        super().__init__(
            f"Invalid pattern: {pattern!r}",
            reply=f'"{pattern}" is an invalid pattern.',
        )
        self.pattern = pattern


class InThePast(SchedulingError):
    """One-off instant is not strictly after now."""

    def __init__(self, pattern: str) -> None:
        super().__init__(
            f"Instant is not in the future: {pattern}",
            reply=f'"{pattern}" is a past date.',
        )
        self.pattern = pattern


class NotFound(SchedulingError):
    """No live job with the given id."""

    def __init__(self, job_id: str) -> None:
        super().__init__(
            f"No such job: {job_id}",
            reply=f"Job {job_id} does not exist.",
        )
        self.job_id = job_id


class CorruptRecord(SchedulingError):
    """A persisted record cannot be turned back into a job."""

    def __init__(self, job_id: str, reason: str) -> None:
        super().__init__(f"Corrupt record {job_id}: {reason}")
        self.job_id = job_id
        self.reason = reason


class PersistenceError(SchedulingError):
    """The brain store could not be read or written."""


class DeliveryError(SchedulingError):
    """The chat adapter failed to send a message."""


class RenderError(SchedulingError):
    """The template renderer failed."""


class TooManyJobs(SchedulingError):
    """No free id left in the namespace."""

    def __init__(self, limit: int) -> None:
        super().__init__(
            f"Job limit reached ({limit})",
            reply="Too many scheduled messages.",
        )
        self.limit = limit


class ListingDenied(SchedulingError):
    """Requester may not list jobs for the requested scope."""


class MutationDenied(SchedulingError):
    """Requester may not update or cancel the job."""
