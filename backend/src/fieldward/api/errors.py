"""FastAPI exception handlers for fieldward errors.

Usage:
    app = FastAPI()
    install_error_handlers(app)

Domain errors become JSON bodies shaped by ``DomainError.to_dict()`` with
the status code of their category. Opaque storage errors become a bare 500;
the underlying engine error is logged and never returned.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fieldward.errors import DomainError, OpaqueStorageError

logger = logging.getLogger(__name__)


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.category, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


async def opaque_storage_error_handler(
    request: Request, exc: OpaqueStorageError
) -> JSONResponse:
    logger.error(
        "Storage failure on %s %s",
        request.method,
        request.url.path,
        exc_info=exc.__cause__ or exc,
    )
    return JSONResponse(
        status_code=500,
        content={"error": {"category": "StorageError", "message": OpaqueStorageError.message}},
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(OpaqueStorageError, opaque_storage_error_handler)
