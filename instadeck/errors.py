import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .integrations.readeck import BackendError, BackendTimeout
from .services.download import ArticleNotFound


logger = logging.getLogger(__name__)

PROBLEM_MEDIA_TYPE = "application/problem+json"


def _problem(
    *,
    code: str,
    message: str,
    status: int,
    trace_id: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    body = {
        "type": f"about:blank#{code}",
        "title": message,
        "status": status,
        "code": code,
        "message": message,
        "trace_id": trace_id,
    }
    if details:
        body["details"] = details
    return JSONResponse(
        body,
        status_code=status,
        headers={"X-Trace-Id": trace_id},
        media_type=PROBLEM_MEDIA_TYPE,
    )


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        trace_id = str(uuid.uuid4())
        detail = exc.detail
        if isinstance(detail, dict):
            message = detail.get("message") or detail.get("error") or "HTTP error"
            return _problem(
                code="http_error",
                message=str(message),
                status=exc.status_code,
                trace_id=trace_id,
                details=detail,
            )
        if isinstance(detail, list):
            return _problem(
                code="http_error",
                message="HTTP error",
                status=exc.status_code,
                trace_id=trace_id,
                details={"errors": detail},
            )
        return _problem(code="http_error", message=str(detail), status=exc.status_code, trace_id=trace_id)

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        trace_id = str(uuid.uuid4())
        return _problem(
            code="validation_error",
            message="Request validation failed",
            status=422,
            trace_id=trace_id,
            details={"errors": exc.errors()},
        )

    @app.exception_handler(ArticleNotFound)
    async def article_not_found_handler(request: Request, exc: ArticleNotFound):  # type: ignore[override]
        trace_id = str(uuid.uuid4())
        logger.info("Download of %s found no bookmark", exc.url)
        return _problem(
            code="article_not_found",
            message="No bookmark matches the requested URL",
            status=404,
            trace_id=trace_id,
        )

    @app.exception_handler(BackendError)
    async def backend_exc_handler(request: Request, exc: BackendError):  # type: ignore[override]
        trace_id = str(uuid.uuid4())
        if isinstance(exc, BackendTimeout):
            logger.error("Readeck call %s timed out [trace %s]: %s", exc.operation, trace_id, exc)
            return _problem(
                code="backend_timeout",
                message="The bookmark server did not respond in time",
                status=504,
                trace_id=trace_id,
            )
        logger.error("Readeck call %s failed [trace %s]: %s", exc.operation, trace_id, exc)
        return _problem(
            code="backend_error",
            message="The bookmark server request failed",
            status=500,
            trace_id=trace_id,
        )

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception):  # type: ignore[override]
        trace_id = str(uuid.uuid4())
        logger.exception("Unhandled error: %s", exc)
        return _problem(
            code="internal_error",
            message="An unexpected error occurred",
            status=500,
            trace_id=trace_id,
        )
