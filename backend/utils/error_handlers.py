import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from utils.errors import AppError
from utils.responses import error_body

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "Internal server error / Daxili server xətası"
DUPLICATE_ENTRY = "Duplicate entry / Təkrarlanan qeyd"
VALIDATION_FAILED = "Validation error / Validasiya xətası"


def _field_path(loc) -> str:
    # drop the "body" / "query" prefix FastAPI adds
    parts = [str(p) for p in loc]
    if parts and parts[0] in ("body", "query", "path", "header", "cookie"):
        parts = parts[1:]
    return ".".join(parts)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("APP_ERROR %s %s: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("APP_ERROR %s %s %s: %s", exc.status_code, request.method, request.url.path, exc.message)

    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.details))


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message),
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"path": _field_path(err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    logger.info("VALIDATION_ERROR %s %s fields=%s", request.method, request.url.path, [d["path"] for d in details])
    return JSONResponse(status_code=400, content=error_body(VALIDATION_FAILED, details))


async def duplicate_key_handler(request: Request, exc: DuplicateKeyError) -> JSONResponse:
    logger.warning("DUPLICATE_KEY %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=409, content=error_body(DUPLICATE_ENTRY))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "UNHANDLED_ERROR %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content=error_body(INTERNAL_ERROR))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    logger.debug("Error handlers registered")
