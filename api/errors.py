"""
api/errors.py -- Map service Failures to HTTP responses.

This is the only place a Failure becomes a status code. Routes pass an
explicit status when a flow needs a different one (e.g. change-password
reports a wrong current password as 422, not 401).

Response shape is the shared ErrorResponse envelope:
  {"error": {"code", "message", "errors"?, "context"?}}

A "field" entry in Outcome.context is lifted into errors={field: [message]}
so form clients can attach the message to the right input.
"""

from __future__ import annotations

from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse
from auth.results import Failure, Outcome

STATUS_FOR: dict[Failure, int] = {
    Failure.EMAIL_TAKEN: 422,
    Failure.WEAK_PASSWORD: 422,
    Failure.PASSWORD_ALREADY_SET: 422,
    Failure.REGISTRATION_DISABLED: 403,
    Failure.INVALID_CREDENTIALS: 401,
    Failure.INVALID_OR_EXPIRED_CODE: 400,
    Failure.INVALID_CODE: 400,
    Failure.CODE_EXPIRED: 400,
    Failure.RATE_LIMITED: 400,
    Failure.ACCOUNT_SUSPENDED: 403,
    Failure.ACCOUNT_INACTIVE: 403,
    Failure.ALREADY_ACTIVE: 400,
    Failure.ALREADY_INACTIVE: 400,
    Failure.ALREADY_SUSPENDED: 400,
    Failure.NOT_SUSPENDED: 400,
    Failure.SUSPENDED_CANNOT_ACTIVATE: 400,
    Failure.SELF_ACTION: 400,
    Failure.NOT_FOUND: 404,
    Failure.DELIVERY_FAILED: 500,
}


def error_response(
    status_code: int,
    code: str,
    message: str,
    errors: dict[str, list[str]] | None = None,
    context: dict | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=code, message=message, errors=errors, context=context or None)
        ).model_dump(exclude_none=True),
    )


def failure_response(outcome: Outcome, status_code: int | None = None) -> JSONResponse:
    """Build the JSON error for a failed Outcome."""
    failure = outcome.failure
    if failure is None:
        raise ValueError("failure_response() called with a successful outcome")
    context = dict(outcome.context)
    field = context.pop("field", None)
    resp = error_response(
        status_code or STATUS_FOR[failure],
        failure.value,
        outcome.message,
        errors={field: [outcome.message]} if field else None,
        context=context,
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


def unknown_email_response() -> JSONResponse:
    """422 for flows that confirm an account exists before acting (reactivation)."""
    message = "No account found with that email address."
    return error_response(422, "validation_error", message, errors={"email": [message]})
