"""Error taxonomy shared by the store, lifecycle and engagement layers."""


class ComplaintError(Exception):
    """Base class for errors surfaced to the caller of a primary operation."""

    status_code = 400
    code = "complaint_error"

    def __init__(self, message: str, **context) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_payload(self) -> dict:
        return {"message": self.message, "error": self.code}


class NotFound(ComplaintError):
    status_code = 404
    code = "not_found"


class Forbidden(ComplaintError):
    status_code = 403
    code = "forbidden"


class RecordInvalid(ComplaintError):
    status_code = 400
    code = "record_invalid"


class Conflict(ComplaintError):
    status_code = 409
    code = "conflict"


class AlreadyRated(Conflict):
    code = "already_rated"


class InvalidState(Conflict):
    code = "invalid_state"


class TransportFailure(Exception):
    """Raised by side-channel transports; callers log it and move on."""
