from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from shortlink_app.api.routes import redirect, urls
from shortlink_app.config import settings
from shortlink_app.dependencies import build_click_pipeline, get_queue, get_storage
from shortlink_app.exceptions import ShortLinkError
from shortlink_app.logging_config import get_logger, set_request_id, setup_logging

setup_logging()
logger = get_logger(__name__)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add request ID to each request for tracing."""

    async def dispatch(self, request: Request, call_next):
        rid = set_request_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the click pipeline with the app and drain it on shutdown"""
    logger.info(f"Starting {settings.app_name} ({settings.environment})")

    # Honour dependency overrides so tests share one storage with the pipeline
    resolve = app.dependency_overrides.get
    storage = resolve(get_storage, get_storage)()
    queue = resolve(get_queue, get_queue)()

    pipeline = build_click_pipeline(storage, queue)
    app.state.click_pipeline = pipeline
    await pipeline.start()

    yield

    await pipeline.stop()
    logger.info(f"Shutting down {settings.app_name}")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Short link service with click analytics",
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(RequestIdMiddleware)


@app.exception_handler(ShortLinkError)
async def short_link_error_handler(request: Request, exc: ShortLinkError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.get("/")
def read_root():
    """Root endpoint with API information"""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
        "redoc": "/redoc"
    }


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint"""
    pipeline = request.app.state.click_pipeline
    return {
        "status": "healthy",
        "environment": settings.environment,
        "queuedClicks": await pipeline.queue.get_queue_length(pipeline.queue_name),
        "pendingAggregations": pipeline.scheduler.pending,
    }


######## Include routers
app.include_router(urls.router, prefix="/api")
# Catch-all /{short_code} goes last
app.include_router(redirect.router)
