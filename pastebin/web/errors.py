import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pastebin.domain.errors import (
    AuthError,
    ConflictError,
    NotFoundError,
    PasteError,
    PolicyError,
    StorageError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_STATUS: list[tuple[type[PasteError], int]] = [
    (ValidationError, 400),
    (PolicyError, 415),
    (AuthError, 401),
    (NotFoundError, 404),
    (ConflictError, 409),
    (StorageError, 500),
]


def status_for(err: PasteError) -> int:
    if isinstance(err, AuthError) and err.code == "not_owner":
        return 403
    for cls, status in _STATUS:
        if isinstance(err, cls):
            return status
    return 500


async def paste_error_handler(request: Request, exc: PasteError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": exc.code})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PasteError, paste_error_handler)
