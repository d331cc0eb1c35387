"""FastAPI application for the omnidesk ingestion and routing engine."""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from omnidesk.infra.config import config
from omnidesk.infra.errors import HelpdeskError
from omnidesk.infra.logging import app_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    app_logger.info(
        "Application starting up",
        extra={"app_env": config.APP_ENV, "webhook_processing_mode": config.WEBHOOK_PROCESSING_MODE},
    )
    if not config.META_APP_SECRET:
        # Every signed webhook will be rejected until this is set
        app_logger.warning("META_APP_SECRET is not set; webhook deliveries will fail verification")

    yield

    app_logger.info("Application shutting down")

    # Close database connections
    from omnidesk.infra.database import engine
    engine.dispose()


app = FastAPI(
    title="Omnidesk API",
    description="""
    Omnidesk receives customer messages from Facebook Messenger, Instagram,
    WhatsApp and an embeddable web widget, and routes them into one
    conversation per contact and inbox.

    ## Features

    - **Webhooks**: Signed Meta webhook deliveries, acknowledged immediately and processed after the response
    - **Messages**: Agent replies dispatched to the contact's channel, and internal notes
    - **Widget**: Visitor chat actions for the embeddable widget
    """,
    version="1.0.0",
    lifespan=lifespan,
    tags_metadata=[
        {
            "name": "Webhooks",
            "description": "Meta webhook subscription handshake and event delivery",
        },
        {
            "name": "Messages",
            "description": "Agent replies and internal notes",
        },
        {
            "name": "Widget",
            "description": "Web widget visitor chat",
        },
        {
            "name": "Health",
            "description": "Health check and monitoring endpoints",
        },
    ],
)

# Setup middleware
from omnidesk.infra.middleware import RequestIDMiddleware, RequestLoggingMiddleware, setup_cors
from omnidesk.infra.timeout import TimeoutMiddleware, REQUEST_TIMEOUT

app.add_middleware(RequestIDMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(TimeoutMiddleware, timeout=REQUEST_TIMEOUT)
setup_cors(app)

# Import and register routers
from omnidesk.api.routers import health, messages, webhooks, widget

app.include_router(webhooks.router)
app.include_router(messages.router)
app.include_router(widget.router)
app.include_router(health.router)


@app.middleware("http")
async def request_size_limit_middleware(request: Request, call_next):
    """Enforce request size limits."""
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > config.MAX_WEBHOOK_BODY_BYTES:
        return JSONResponse(
            status_code=413,
            content={"error": f"Request too large. Maximum size: {config.MAX_WEBHOOK_BODY_BYTES} bytes"},
        )
    return await call_next(request)


# Error handlers
@app.exception_handler(HelpdeskError)
async def helpdesk_exception_handler(request: Request, exc: HelpdeskError):
    """Map engine errors to their HTTP status with an {"error": ...} body."""
    app_logger.info(
        "Request rejected",
        extra={
            "path": request.url.path,
            "category": exc.category.value,
            "status_code": exc.status_code,
            "error": exc.message,
        },
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    return JSONResponse(
        status_code=422,
        content={"error": "Invalid request", "detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions."""
    error_id = str(uuid.uuid4())
    app_logger.error(f"Unhandled exception: {exc}", exc_info=True, extra={"error_id": error_id})
    return JSONResponse(
        status_code=500,
        content={"error": f"Internal server error. Error ID: {error_id}"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=30,
    )
