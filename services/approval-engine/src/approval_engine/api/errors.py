"""Map approval engine exceptions onto HTTP responses."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi.responses import JSONResponse
from grc_core.exceptions import (
    AlreadyDecidedError,
    ApprovalError,
    IdentityServiceError,
    InvalidTransitionError,
    NotAuthorizedError,
    NotFoundError,
    TimerStoreError,
    ValidationError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[ApprovalError], int], ...] = (
    (ValidationError, 400),
    (NotAuthorizedError, 403),
    (NotFoundError, 404),
    (AlreadyDecidedError, 409),
    (InvalidTransitionError, 409),
    (IdentityServiceError, 502),
    (TimerStoreError, 503),
)


def status_for(exc: ApprovalError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def already_decided_response(exc: AlreadyDecidedError) -> JSONResponse:
    """409 body for a late decision. Returned, not raised, so the ledger entry commits."""
    content: dict[str, object] = {"detail": str(exc), "error": "already_decided"}
    if exc.action is not None:
        content["action_id"] = str(exc.action.id)
    return JSONResponse(status_code=409, content=content)


async def approval_error_handler(request: Request, exc: ApprovalError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
    else:
        logger.info("%s %s rejected (%d): %s", request.method, request.url.path, status, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApprovalError, approval_error_handler)
