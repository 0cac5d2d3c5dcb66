"""
Wee Adventure Photo API Server

FastAPI server that accepts processed journal photos and stores them in an
S3-compatible object store.
"""

from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
import logging
import os
import uvicorn
from dotenv import load_dotenv
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore
from starlette.exceptions import HTTPException as StarletteHTTPException

from wee_adventure.api.routes import router, limiter as routes_limiter
from wee_adventure.models.schemas import HealthResponse
from wee_adventure.services.storage_service import (
    StorageService,
    get_storage_service,
    init_storage_service,
    log_storage_status,
)
from wee_adventure.utils.datetime_utils import utcnow

load_dotenv()

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    logger.info("Starting up Wee Adventure Photo API...")

    storage = init_storage_service()
    log_storage_status(storage.config)

    # Make sure the bucket exists; the API still starts if it can't
    if storage.is_configured:
        try:
            if await storage.ensure_container():
                logger.info("Storage bucket ready: %s", storage.config.bucket)
            else:
                logger.warning("Storage bucket %s is not available yet", storage.config.bucket)
        except Exception as e:
            logger.error(f"Failed to prepare storage bucket: {e}", exc_info=True)

    yield  # App is running

    logger.info("Shutting down Wee Adventure Photo API...")


app = FastAPI(
    title="Wee Adventure Photo API",
    description="API for uploading and managing family adventure journal photos",
    version="1.0.0",
    lifespan=lifespan,
)

# Setup rate limiter
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Error bodies are {"error": message}."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"error": "Invalid request", "details": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


# Add CORS middleware - origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


@app.get("/api/health", response_model=HealthResponse)
async def health_check(storage: StorageService = Depends(get_storage_service)):
    """Overall health: "healthy" when storage is reachable, otherwise "partial"."""
    try:
        storage_ok = storage.is_configured and await storage.check_connection()
    except Exception as e:
        logger.warning(f"Storage health check failed: {e}")
        storage_ok = False
    return HealthResponse(
        status="healthy" if storage_ok else "partial",
        storage=storage_ok,
        timestamp=utcnow().isoformat(),
    )


@app.get("/", response_class=HTMLResponse)
async def root():
    """API root endpoint - the journal frontend is served separately."""
    return HTMLResponse(
        content="""
        <!DOCTYPE html>
        <html>
            <head>
                <title>Wee Adventure Photo API</title>
                <style>
                    body { font-family: sans-serif; max-width: 800px; margin: 50px auto; padding: 20px; }
                    h1 { color: #2f855a; }
                    a { color: #2f855a; }
                </style>
            </head>
            <body>
                <h1>Wee Adventure Photo API</h1>
                <p>API is running successfully!</p>
                <h2>Available Resources:</h2>
                <ul>
                    <li><a href="/docs">API Documentation</a> - Interactive API docs</li>
                    <li><a href="/api/health">Health Check</a> - System status</li>
                    <li><a href="/api/photos/status">Storage Status</a> - Photo storage configuration</li>
                </ul>
            </body>
        </html>
    """
    )


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
