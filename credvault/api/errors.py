"""Maps vault exceptions onto HTTP responses.

Bodies carry only the generic message, the error code and the request id.
Key and storage failures collapse to a plain 500.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from credvault.exceptions import (
    AccessDenied, DuplicateCredential, Expired, NotFound, NotFoundOrDenied,
    TenantInactive, ValidationFailed, VaultError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR: list[tuple[type[VaultError], int]] = [
    (ValidationFailed, 400),
    (TenantInactive, 403),
    (AccessDenied, 403),
    (NotFoundOrDenied, 404),
    (NotFound, 404),
    (DuplicateCredential, 409),
    (Expired, 410),
]


def status_for(exc: VaultError) -> int:
    for error_type, status in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def _request_id(request: Request):
    ctx = getattr(request.state, "request_context", None)
    return ctx.request_id if ctx is not None else None


async def vault_error_handler(request: Request, exc: VaultError) -> JSONResponse:
    status = status_for(exc)
    request_id = _request_id(request)
    if status == 500:
        logger.error("[API] %s on %s %s (request_id=%s)",
                     type(exc).__name__, request.method, request.url.path, request_id)
        body = {"error": "Internal error", "error_code": "VAULT_000", "request_id": request_id}
    else:
        body = {"error": str(exc), "error_code": exc.error_code, "request_id": request_id}
    if isinstance(exc, ValidationFailed):
        body["errors"] = [e.model_dump() for e in exc.errors]
    return JSONResponse(body, status_code=status)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(VaultError, vault_error_handler)
