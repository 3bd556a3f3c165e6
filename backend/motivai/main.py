"""
FastAPI main application.

Handles:
- Application initialization
- Middleware configuration
- Route mounting
- CORS setup
- Startup/shutdown events
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from motivai.core.config import settings
from motivai.core.errors import MotivaiError
from motivai.core.rate_limit import limiter, rate_limit_exception, rate_limit_handler
from motivai.api.routes import subscriptions

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Subscription, AI quota and plan management for MotivAI",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

app.state.limiter = limiter
app.add_exception_handler(rate_limit_exception, rate_limit_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.backend_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Debug mode: {settings.debug}")

    from motivai.db.base import Base, engine
    import motivai.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Application startup complete")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("Shutting down application")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment
    }


# Mount API routes
app.include_router(
    subscriptions.router,
    prefix=f"{settings.api_v1_prefix}/subscriptions",
    tags=["subscriptions"]
)


# Exception handlers
@app.exception_handler(MotivaiError)
async def motivai_error_handler(request, exc: MotivaiError):
    """Map application errors onto the error envelope."""
    if exc.status >= 500:
        logger.error(f"{exc.error_type}: {exc.message}")
    else:
        logger.warning(f"{exc.error_type} on {request.url.path}: {exc.message}")

    content = {"success": False, "error": exc.message, "status": exc.status}
    details = exc.to_dict()
    for key, value in details.items():
        if key not in ("message", "status"):
            content[key] = value

    return JSONResponse(status_code=exc.status or 500, content=content)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc: StarletteHTTPException):
    """Wrap framework HTTP errors (auth, routing) in the error envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail, "status": exc.status_code},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request, exc):
    """Handle uncaught exceptions."""
    logger.error(f"Uncaught exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "status": 500}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "motivai.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
