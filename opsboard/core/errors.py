"""
Workflow errors for task status changes, reviews and assignment.

Every error carries a machine-readable ``reason`` and a human-readable
``message``. The store renders them as ``{"detail": message, "reason": reason}``
and the viewer client turns such a payload back into the same class.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class WorkflowError(Exception):
    reason = "error"
    status_code = 400

    def __init__(self, message: Optional[str] = None, reason: Optional[str] = None):
        if reason:
            self.reason = reason
        self.message = message or self.reason
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"detail": self.message, "reason": self.reason}


class IllegalTransitionError(WorkflowError):
    reason = "illegal-transition"
    status_code = 422


class InsufficientEvidenceError(WorkflowError):
    reason = "insufficient-evidence"
    status_code = 422


class NotProjectMemberError(WorkflowError):
    reason = "not-a-project-member"
    status_code = 422


class ForbiddenError(WorkflowError):
    reason = "forbidden"
    status_code = 403


class NotFoundError(WorkflowError):
    reason = "not-found"
    status_code = 404


class ConflictError(WorkflowError):
    reason = "conflict"
    status_code = 409


class AlreadyInitializedError(WorkflowError):
    reason = "already-initialized"
    status_code = 409


class InvalidRequestError(WorkflowError):
    reason = "invalid-request"
    status_code = 400


# Client only: these never come out of the store

class TransportError(WorkflowError):
    reason = "transport"
    status_code = 503


class MutationInFlightError(WorkflowError):
    reason = "mutation-in-flight"
    status_code = 409


class ReviewInconsistencyError(WorkflowError):
    """The review was written but the status change that should follow it failed."""

    reason = "review-inconsistent"
    status_code = 409

    def __init__(self, review, cause: WorkflowError):
        super().__init__(
            f"Review {review.id} recorded but task status was not updated: {cause.message}"
        )
        self.review = review
        self.cause = cause


ERRORS_BY_REASON = {
    cls.reason: cls
    for cls in (
        IllegalTransitionError,
        InsufficientEvidenceError,
        NotProjectMemberError,
        ForbiddenError,
        NotFoundError,
        ConflictError,
        AlreadyInitializedError,
        InvalidRequestError,
        TransportError,
        MutationInFlightError,
    )
}

ERRORS_BY_STATUS = {
    400: InvalidRequestError,
    401: ForbiddenError,
    403: ForbiddenError,
    404: NotFoundError,
    409: ConflictError,
    422: InvalidRequestError,
}


def error_for_reason(reason: str, message: Optional[str] = None) -> WorkflowError:
    cls = ERRORS_BY_REASON.get(reason)
    if cls is None:
        return WorkflowError(message, reason=reason)
    return cls(message)


def error_for_response(status_code: int, payload: Optional[dict]) -> WorkflowError:
    """Rebuild a WorkflowError from a store response."""
    payload = payload or {}
    detail = payload.get("detail")
    message = detail if isinstance(detail, str) else f"Store returned HTTP {status_code}"
    reason = payload.get("reason")
    if reason in ERRORS_BY_REASON:
        return ERRORS_BY_REASON[reason](message)
    if status_code >= 500:
        return TransportError(message)
    cls = ERRORS_BY_STATUS.get(status_code, WorkflowError)
    return cls(message)


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    logger.info("%s %s -> %s (%s)", request.method, request.url.path, exc.reason, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WorkflowError, workflow_error_handler)
