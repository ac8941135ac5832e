"""
Sewdle Sync - FastAPI Backend
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi import status
import uvicorn
import logging

from routes.api import register_routes
from app.database import engine, Base
from app.config import settings
from app import models  # noqa: F401 - register all models with Base

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Sewdle Sync API",
    description="Shopify inventory sync, sync ledger and reconciliation",
    version="1.0.0",
    docs_url="/docs" if settings.IS_DEVELOPMENT else None,
    redoc_url="/redoc" if settings.IS_DEVELOPMENT else None,
)

logger.info("Starting Sewdle Sync API")
logger.info("Environment: %s (production=%s)", settings.ENV, settings.IS_PRODUCTION)

# Startup config validation (warn only)
if settings.IS_PRODUCTION and settings.JWT_SECRET.strip() in ("", "supersecret_fallback_key_change_in_production"):
    logger.warning("JWT_SECRET is default or empty in production. Set a strong JWT_SECRET in environment.")
if not settings.shopify_configured:
    logger.warning("SHOPIFY_STORE_DOMAIN / SHOPIFY_ACCESS_TOKEN not set. Shopify calls will fail.")
if not settings.SHOPIFY_WEBHOOK_SECRET:
    logger.warning("SHOPIFY_WEBHOOK_SECRET not set. Webhooks are %s.",
                   "rejected" if settings.WEBHOOK_SIGNATURE_POLICY == "strict" else "accepted unverified")


def get_cors_headers(request: Request) -> dict:
    """Get CORS headers for a request"""
    origin = request.headers.get("origin", "")
    allowed_origins = settings.ALLOWED_ORIGINS

    if origin in allowed_origins:
        cors_origin = origin
    elif settings.IS_DEVELOPMENT and (origin.startswith("http://localhost") or origin.startswith("http://127.0.0.1")):
        cors_origin = origin
    elif allowed_origins:
        cors_origin = allowed_origins[0]
    else:
        cors_origin = "*"

    return {
        "Access-Control-Allow-Origin": cors_origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "*",
    }

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("Validation error: %s", exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": exc.errors(),
            "message": "Validation error: Please check your request format"
        },
        headers=get_cors_headers(request)
    )

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTPException and ensure CORS headers are sent"""
    headers = get_cors_headers(request)
    if exc.headers:
        headers.update(exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=headers
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler to ensure CORS headers are always sent"""
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.IS_DEVELOPMENT else "An error occurred"
        },
        headers=get_cors_headers(request)
    )

cors_kwargs = {
    "allow_origins": settings.ALLOWED_ORIGINS,
    "allow_credentials": True,
    "allow_methods": ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    "allow_headers": ["*"],
}
if settings.CORS_ORIGIN_REGEX:
    cors_kwargs["allow_origin_regex"] = settings.CORS_ORIGIN_REGEX

app.add_middleware(CORSMiddleware, **cors_kwargs)

register_routes(app, settings)

@app.get("/health")
async def health():
    """Health check endpoint. Includes DB connectivity check."""
    db_status = "ok"
    try:
        from sqlalchemy import text
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Health check DB ping failed: %s", e)
        db_status = "error"
    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "service": "api",
        "db": db_status,
        "shopify": "configured" if settings.shopify_configured else "missing",
        "environment": settings.ENV,
    }

@app.get("/api")
async def root():
    """API root endpoint"""
    return {
        "message": "Sewdle Sync API",
        "version": "1.0.0",
        "environment": settings.ENV,
        "docs": "/docs" if settings.IS_DEVELOPMENT else "disabled in production"
    }

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.IS_DEVELOPMENT,
        log_level=settings.LOG_LEVEL.lower()
    )
