"""
Error taxonomy for note scheduling and delivery.

Delivery-level failures are recorded as attempts on the note and drive the
retry / dead-letter decision. Infrastructure failures (storage, queue) are
raised to the caller so the queue's own redelivery can re-run the job.
"""


class NoteDropError(Exception):
    """Base class for all NoteDrop errors."""


class NoteNotFound(NoteDropError):
    """The note does not exist (never created or deleted out of band)."""

    def __init__(self, note_id: str):
        super().__init__(f"Note not found: {note_id}")
        self.note_id = note_id


class TransientDeliveryError(NoteDropError):
    """A single webhook call failed: non-200 status, timeout or connection error."""

    # Recorded when no HTTP response was received at all
    NO_RESPONSE = 0

    def __init__(self, message: str, status_code: int = NO_RESPONSE):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class TerminalDeliveryError(NoteDropError):
    """The attempt budget is exhausted; the note is dead until replayed."""

    def __init__(self, note_id: str, attempts: int):
        super().__init__(f"Note {note_id} is dead after {attempts} attempts")
        self.note_id = note_id
        self.attempts = attempts


class StorageUnavailable(NoteDropError):
    """The note store could not be read or updated."""


class QueueUnavailable(NoteDropError):
    """A delivery job could not be admitted to the queue."""


class ReplayNotAllowed(NoteDropError):
    """Replay was requested for a note that is not dead or failed."""

    def __init__(self, note_id: str, status: str):
        super().__init__(
            f"Only dead or failed notes can be replayed (note {note_id} is {status})"
        )
        self.note_id = note_id
        self.status = status
