"""
FastAPI application entry point for the game rental checkout backend.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from app.config import settings
from app.exceptions import AppError
from app.logging_config import setup_logging
from app.rate_limit import limiter
from app.routers import checkout, webhooks, status
from app.services.scheduler import start_scheduler, stop_scheduler

# Get logger for request logging
logger = logging.getLogger(__name__)

# Configure logging
setup_logging(settings.LOG_LEVEL)

CORS_ALLOW_HEADERS = "Content-Type, Authorization, x-openpix-signature"
CORS_ALLOW_METHODS = "GET,POST,OPTIONS"

HTTP_ERROR_CODES = {
    404: "not_found",
    405: "method_not_allowed",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    # Startup
    logger.info("Starting up game rental checkout API...")
    start_scheduler()
    yield
    # Shutdown
    logger.info("Shutting down game rental checkout API...")
    stop_scheduler()


app = FastAPI(
    title="Game Rental Checkout API",
    description="Checkout sessions and payment webhook reconciliation for the game rental storefront",
    version="0.1.0",
    lifespan=lifespan
)

# Configure rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Render domain errors as {"error": code}."""
    headers = {"WWW-Authenticate": "Bearer"} if exc.code == "unauthorized" else None
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code}, headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    """Keep framework errors (unknown route, wrong method) in the same shape."""
    code = HTTP_ERROR_CODES.get(exc.status_code, str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": code},
        headers=getattr(exc, "headers", None),
    )


def cors_headers(request: Request) -> dict:
    origin = settings.CORS_ALLOW_ORIGIN or request.headers.get("origin") or "*"
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
        "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
    }


# Catch-all for unexpected errors; registered first so it sits innermost
@app.middleware("http")
async def handle_unexpected_errors(request: Request, call_next):
    """Map anything unhandled to a generic 500, keeping details in the server log."""
    try:
        return await call_next(request)
    except Exception:
        logger.exception(f"Unhandled error: {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"error": "internal_error"})


# Security headers middleware
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    return response


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests with method, path, origin, and response status."""
    origin = request.headers.get("origin", "no-origin")
    logger.info(f"Request: {request.method} {request.url.path} | Origin: {origin}")

    response = await call_next(request)

    logger.info(f"Response: {request.method} {request.url.path} | Status: {response.status_code}")
    return response


# CORS middleware; outermost so preflights never reach the routers
@app.middleware("http")
async def add_cors_headers(request: Request, call_next):
    """Permissive CORS on every response; OPTIONS short-circuits to 204."""
    if request.method == "OPTIONS":
        headers = cors_headers(request)
        return Response(status_code=204, headers=headers)

    response = await call_next(request)
    response.headers.update(cors_headers(request))
    return response


# Register routers
app.include_router(status.router, tags=["status"])
app.include_router(checkout.router, tags=["checkout"])
app.include_router(webhooks.router, tags=["webhooks"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
