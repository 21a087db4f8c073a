from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import logging

from .exceptions import PortalException

logger = logging.getLogger(__name__)


def _body(message: str, status_code: int, error_type: str) -> dict:
    return {
        "status": "fail" if status_code < 500 else "error",
        "message": message,
        "type": error_type,
    }


async def portal_exception_handler(request: Request, exc: PortalException):
    """Handle domain exceptions raised by services"""
    if exc.status_code >= 500:
        logger.error(f"Portal error: {exc.message} - Path: {request.url.path}")
    else:
        logger.info(f"Request rejected ({exc.status_code}): {exc.message} - Path: {request.url.path}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_body(exc.message, exc.status_code, exc.__class__.__name__),
        headers=exc.headers,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Collapse pydantic errors into one readable message"""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        text = str(error.get("msg", "Invalid value")).removeprefix("Value error, ")
        messages.append(f"{location}: {text}" if location else text)
    message = "; ".join(messages) or "Invalid request."
    logger.info(f"Validation error: {message} - Path: {request.url.path}")
    return JSONResponse(
        status_code=400,
        content=_body(message, 400, "ValidationError"),
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions"""
    logger.exception(f"Unexpected error: {str(exc)} - Path: {request.url.path}")
    return JSONResponse(
        status_code=500,
        content=_body("Internal server error", 500, "InternalError"),
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(PortalException, portal_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
