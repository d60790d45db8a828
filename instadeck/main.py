import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from . import __version__
from .errors import register_error_handlers
from .routers import images, kobo, status
from .observability.logging import access_log_middleware, bind_request_id, setup_logging
from .observability.metrics import metrics_endpoint, request_metrics_middleware
from .observability.sentry import init_sentry


logger = logging.getLogger(__name__)


async def close_http_clients(app: FastAPI) -> None:
    pool = app.state.readeck_pool
    if pool is not None:
        await pool.aclose()
        app.state.readeck_pool = None
    client = app.state.image_client
    if client is not None:
        await client.aclose()
        app.state.image_client = None
    logger.info("Closed outbound HTTP clients")


def create_app() -> FastAPI:
    tags_metadata = [
        {"name": "status", "description": "Service health"},
        {"name": "kobo", "description": "Instapaper-style device sync, download and actions"},
        {"name": "images", "description": "Image conversion for the device renderer"},
    ]

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await close_http_clients(app)

    app = FastAPI(title="instadeck", version=__version__, openapi_tags=tags_metadata, lifespan=lifespan)
    app.state.readeck_pool = None
    app.state.image_client = None
    register_error_handlers(app)
    setup_logging()
    init_sentry(app)

    # Metrics middleware
    app.middleware("http")(request_metrics_middleware)
    app.middleware("http")(access_log_middleware)
    # Request ID binder
    @app.middleware("http")
    async def add_request_id(request, call_next):
        rid = bind_request_id(request.headers.get("X-Request-Id"))
        response = await call_next(request)
        response.headers["X-Request-Id"] = rid
        return response

    # Routers
    app.include_router(status.router)
    app.include_router(kobo.router)
    app.include_router(images.router)
    # Prometheus metrics
    app.add_api_route("/metrics", metrics_endpoint, include_in_schema=False)

    return app


app = create_app()
