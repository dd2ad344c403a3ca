"""
Socialise API - FastAPI application entry point.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import get_settings
from .database import SessionLocal, init_db
from .dependencies import get_queue
from .limiter import limiter
from .logging_config import api_logger
from .middleware import SecurityHeadersMiddleware, RequestLoggingMiddleware
from .responses import ApiException, api_exception_handler
from .routes import (
    accounts_router,
    posts_router,
    queue_router,
    health_router,
)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown"""
    # Tables are created here; use migrations in production
    init_db()

    worker = None
    if settings.embedded_worker:
        from .worker import PostPublisherWorker, PostPublishProcessor

        worker = PostPublisherWorker(get_queue(), PostPublishProcessor(SessionLocal))
        worker.start_background()
        api_logger.info("Started embedded publisher worker")

    yield

    if worker is not None:
        worker.stop(timeout=10)
        api_logger.info("Stopped embedded publisher worker")


app = FastAPI(
    title="Socialise API",
    description="Social media scheduling and publish queue",
    version="1.0.0",
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(ApiException, api_exception_handler)

app.add_middleware(SecurityHeadersMiddleware)

if settings.debug:
    app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Accept",
        "Origin",
        "X-Requested-With",
        "X-Workspace-Id",
    ],
    max_age=3600,
)

# Routes
app.include_router(accounts_router)
app.include_router(posts_router)
app.include_router(queue_router)
app.include_router(health_router)


@app.get("/")
def root():
    return {
        "message": "Socialise API",
        "docs": "/api/docs" if settings.debug else "Disabled in production",
    }
