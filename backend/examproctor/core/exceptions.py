from typing import Any, Dict, Optional


class ProctorError(Exception):
    """Base class for errors raised by the session and catalog services."""

    status_code = 400
    kind = "error"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body = {"success": False, "error": self.kind, "message": self.message}
        body.update(self.extra)
        return body


class NotFoundError(ProctorError):
    status_code = 404
    kind = "not_found"


class ForbiddenError(ProctorError):
    status_code = 403
    kind = "forbidden"


class InvalidStateError(ProctorError):
    status_code = 400
    kind = "invalid_state"


class AlreadySubmittedError(ProctorError):
    status_code = 409
    kind = "already_submitted"

    def __init__(self, message: str, session_id: Optional[int] = None):
        results_url = f"/api/v1/proctoring/results/{session_id}" if session_id is not None else None
        super().__init__(message, session_id=session_id, results_url=results_url)
        self.session_id = session_id
        self.results_url = results_url


class ExamValidationError(ProctorError):
    status_code = 422
    kind = "validation_error"

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message, errors=errors or [message])
        self.errors = errors or [message]


class LedgerWriteError(ProctorError):
    """The violation could not be stored; the client may retry."""

    status_code = 503
    kind = "ledger_unavailable"

    def __init__(self, message: str):
        super().__init__(message, retry=True)
