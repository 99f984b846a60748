"""
Operational error taxonomy and the global exception handlers.

Anything raised as ``AppError`` is expected and its message is safe to show.
Store, validation and JWT library errors are translated into ``AppError``
before the response is built; everything else is a programming error.
"""

import logging
import re
import traceback
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from jose import ExpiredSignatureError, JWTError
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import config

logger = logging.getLogger(__name__)


class AppError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.status = "fail" if 400 <= status_code < 500 else "error"
        self.is_operational = True


class NotFound(AppError):
    def __init__(self, message: str = "No document found with that ID"):
        super().__init__(message, 404)


class Forbidden(AppError):
    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(message, 403)


class InvalidToken(AppError):
    def __init__(self, message: str = "Invalid token. Please log in again!"):
        super().__init__(message, 401)


class ExpiredToken(AppError):
    def __init__(self, message: str = "Your token has expired! Please log in again."):
        super().__init__(message, 401)


class InvalidPage(AppError):
    def __init__(self, message: str = "This page does not exist!"):
        super().__init__(message, 404)


def _duplicate_value(err: DuplicateKeyError) -> str:
    details = err.details or {}
    key_value = details.get("keyValue")
    if key_value:
        return ", ".join(str(v) for v in key_value.values())
    match = re.search(r"([\"'])(.*?[^\\])\1", str(err))
    return match.group(2) if match else "unknown"


def _validation_message(errors) -> str:
    messages = []
    for e in errors:
        loc = ".".join(str(p) for p in e.get("loc", ()) if p != "body")
        msg = e.get("msg", "")
        messages.append(f"{loc}: {msg}" if loc else msg)
    return "Invalid input data. " + ". ".join(messages)


def translate(exc: Exception) -> Exception:
    """Map library errors onto the operational taxonomy; others pass through."""
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, DuplicateKeyError):
        return AppError(f"Duplicate field value: {_duplicate_value(exc)}. Please use another value!", 400)
    if isinstance(exc, (ValidationError, RequestValidationError)):
        return AppError(_validation_message(exc.errors()), 400)
    if isinstance(exc, ExpiredSignatureError):
        return ExpiredToken()
    if isinstance(exc, JWTError):
        return InvalidToken()
    if isinstance(exc, StarletteHTTPException):
        return AppError(str(exc.detail), exc.status_code)
    return exc


def _is_api(request: Request) -> bool:
    return request.url.path.startswith("/api")


def _render_error(request: Request, status_code: int, msg: str):
    # the templates object lives with the page routes
    from routers.views import templates

    return templates.TemplateResponse(
        request,
        "error.html",
        {"title": "Something went wrong!", "msg": msg},
        status_code=status_code,
    )


def _send_dev(err: Exception, original: Exception, request: Request):
    status_code = getattr(err, "status_code", 500)
    message = getattr(err, "message", None) or str(err) or "Something went very wrong!"
    if _is_api(request):
        body: Dict[str, Any] = {
            "status": getattr(err, "status", "error"),
            "error": repr(original),
            "message": message,
            "stack": "".join(traceback.format_exception(type(original), original, original.__traceback__)),
        }
        return JSONResponse(status_code=status_code, content=body)
    return _render_error(request, status_code, message)


def _send_prod(err: Exception, request: Request):
    if isinstance(err, AppError):
        if _is_api(request):
            return JSONResponse(status_code=err.status_code, content={"status": err.status, "message": err.message})
        return _render_error(request, err.status_code, err.message)

    if _is_api(request):
        return JSONResponse(status_code=500, content={"status": "error", "message": "Something went very wrong!"})
    return _render_error(request, 500, "Please try again later.")


async def global_error_handler(request: Request, exc: Exception):
    err = translate(exc)
    if not isinstance(err, AppError):
        logger.error("ERROR 💥 %s %s", request.method, request.url.path, exc_info=(type(exc), exc, exc.__traceback__))
    if config.is_production():
        return _send_prod(err, request)
    return _send_dev(err, exc, request)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        return await global_error_handler(request, AppError(f"Cannot find {request.url.path} on this server!", 404))
    return await global_error_handler(request, exc)


def register(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    for exc_class in (AppError, RequestValidationError, ValidationError, DuplicateKeyError, JWTError):
        app.add_exception_handler(exc_class, global_error_handler)
    # unknown errors; starlette re-raises these after the response is sent
    app.add_exception_handler(Exception, global_error_handler)
