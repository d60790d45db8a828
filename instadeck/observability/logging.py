import logging
import os
import time
import uuid
from contextvars import ContextVar
from typing import Callable

from pythonjsonlogger import jsonlogger
from starlette.requests import Request


request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

access_logger = logging.getLogger("instadeck.access")


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        # The formatter expects ``request_id`` on every record, including
        # startup logs emitted before any request is bound.
        record.request_id = request_id_ctx.get() or ""
        return True


def setup_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logger = logging.getLogger()
    logger.setLevel(level)
    # Clear default handlers
    logger.handlers = []
    handler = logging.StreamHandler()
    fmt = jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s")
    handler.setFormatter(fmt)
    handler.addFilter(ContextFilter())
    logger.addHandler(handler)
    # httpx logs every request at INFO; keep it for debugging only
    logging.getLogger("httpx").setLevel(max(logger.level, logging.WARNING))


def bind_request_id(req_id: str | None = None) -> str:
    rid = req_id or str(uuid.uuid4())
    request_id_ctx.set(rid)
    return rid


async def access_log_middleware(request: Request, call_next: Callable):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    access_logger.info(
        "%s %s %d %.1fms",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        extra={
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(elapsed_ms, 1),
        },
    )
    return response
