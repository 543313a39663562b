"""
Standardized response utilities and domain error handlers
"""

import logging
from typing import Any, Dict, Optional
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from guestlist.core.errors import RosterError
from guestlist.schemas.common import StandardResponse, ErrorResponse

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 1

def success_response(
    message: str,
    data: Any = None,
    status_code: int = 200
) -> JSONResponse:
    """Create standardized success response"""
    response = StandardResponse(
        success=True,
        message=message,
        data=data
    )
    return JSONResponse(
        content=response.model_dump(mode="json"),
        status_code=status_code
    )

def error_response(
    message: str,
    error_code: Optional[str] = None,
    details: Any = None,
    status_code: int = 400,
    retryable: bool = False,
    headers: Optional[Dict[str, str]] = None
) -> JSONResponse:
    """Create standardized error response"""
    response = ErrorResponse(
        message=message,
        error_code=error_code,
        details=details,
        retryable=retryable
    )
    return JSONResponse(
        content=response.model_dump(mode="json"),
        status_code=status_code,
        headers=headers
    )

async def roster_error_handler(request: Request, exc: RosterError) -> JSONResponse:
    """Render a domain error; retryable ones carry Retry-After"""
    if exc.retryable:
        logger.warning("Retryable error on %s %s: %s", request.method, request.url.path, exc)
        headers = {"Retry-After": str(RETRY_AFTER_SECONDS)}
    else:
        logger.info("Rejected %s %s: %s", request.method, request.url.path, exc)
        headers = None

    return error_response(
        message=exc.message,
        error_code=exc.code.value,
        details=exc.details,
        status_code=exc.status_code,
        retryable=exc.retryable,
        headers=headers
    )

def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RosterError, roster_error_handler)
