class ScheduleFetchError(Exception):
    """Raised when the booking backend cannot deliver a usable payload."""

    def __init__(self, message: str, transient: bool = False, status_code: int = None):
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code


class MalformedRecordError(ValueError):
    """A booking record that cannot be placed on the calendar."""
    pass
