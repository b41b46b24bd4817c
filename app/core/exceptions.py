from typing import Any

from fastapi import HTTPException

from app.models.equipment_request import TokenOutcome


TOKEN_ERROR_STATUS = {
    TokenOutcome.MISSING: 400,
    TokenOutcome.NOT_FOUND: 404,
    TokenOutcome.INVALID: 401,
    TokenOutcome.USED: 409,
    TokenOutcome.EXPIRED: 410,
}

TOKEN_ERROR_MESSAGES = {
    TokenOutcome.MISSING: "Approval token is required.",
    TokenOutcome.NOT_FOUND: "This approval link does not match any request.",
    TokenOutcome.INVALID: "This approval link is invalid.",
    TokenOutcome.USED: "This request has already been approved or rejected.",
    TokenOutcome.EXPIRED: "This approval link has expired.",
}


class InvalidRequestError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=400, detail=detail)


class RequestNotFoundError(HTTPException):
    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(status_code=404, detail="Request not found")


class ApprovalTokenError(HTTPException):
    """Raised when a presented approval token cannot authorize a decision.

    ``reason`` carries the machine-readable outcome so clients can show a
    precise message without inspecting the status code.
    """

    def __init__(self, outcome: TokenOutcome):
        if outcome == TokenOutcome.VALID:
            raise ValueError("ApprovalTokenError requires a failing outcome")
        self.outcome = outcome
        super().__init__(
            status_code=TOKEN_ERROR_STATUS[outcome],
            detail={
                "valid": False,
                "reason": outcome.value,
                "message": TOKEN_ERROR_MESSAGES[outcome],
            },
        )

    @property
    def reason(self) -> str:
        return self.outcome.value


class StorePersistenceError(Exception):
    """The request store could not durably write a change.

    Retryable infrastructure failure. The in-memory view is left as it was
    before the failed write.
    """

    def __init__(self, message: str, *, cause: Any = None):
        super().__init__(message)
        self.cause = cause
