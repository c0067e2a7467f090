"""
FastAPI application entry point.
"""

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from guestbook.db import async_session_maker, close_db, init_db
from guestbook.routers import auth, guestbook, realtime
from guestbook.services.profanity import ProfanityChecker
from guestbook.services.realtime import ChangeFeed
from guestbook.services.store import GuestbookStore, StoreError
from guestbook.settings import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s" if settings.log_format == "text" else None,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting Guestbook...")
    await init_db()
    app.state.feed = ChangeFeed()
    app.state.store = GuestbookStore(async_session_maker, app.state.feed)
    app.state.classifier = ProfanityChecker()
    yield
    logger.info("Shutting down Guestbook...")
    await close_db()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    debug=settings.debug,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request ID middleware
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add request ID to all requests for logging."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# Health check endpoint
@app.get("/healthz", tags=["health"])
@app.get("/health", tags=["health"])
async def healthz():
    """Health check endpoint for load balancers."""
    return {"status": "healthy"}


@app.get("/meta", tags=["meta"])
async def meta():
    """Return application metadata."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "page_size": settings.page_size,
    }


# Include routers
app.include_router(auth.router)
app.include_router(guestbook.router)
app.include_router(realtime.router)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    """Storage failures surface as 503 so clients can retry."""
    request_id = getattr(request.state, "request_id", None)
    logger.error(f"Store error on {request.method} {request.url.path} [{request_id}]: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": "Something went wrong. Please try again."},
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "guestbook.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
