"""
Exception handlers that turn domain errors into structured JSON responses.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from showbook.core.exceptions import DomainError, TransientStorageFailure
from showbook.core.logging import get_logger

logger = get_logger(__name__)


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("domain_error", error=exc.code, detail=exc.message)
    else:
        logger.info("domain_error", error=exc.code, detail=exc.message)

    headers = None
    if isinstance(exc, TransientStorageFailure):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
