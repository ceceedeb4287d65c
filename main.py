from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from app.core.config import settings
from app.core.database import engine
from app.core.exceptions import AuthAPIException
from app.core.rate_limit import limiter
from app.core.runtime import AuthRuntime
from app.core.timeutils import utcnow
from app.core.middleware import (
    RequestLoggingMiddleware,
    RequestValidationMiddleware,
    SecurityHeadersMiddleware,
)
from app.api.routes.auth import router as auth_router
from app.api.routes.mfa import router as mfa_router
from app.api.routes.recovery_codes import router as recovery_codes_router
from app.api.routes.users import router as users_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

IS_PRODUCTION = settings.ENVIRONMENT == "production"


def run_migrations():
    """Run database migrations on startup."""
    try:
        from alembic.config import Config
        from alembic import command

        logger.info("Running database migrations...")
        alembic_cfg = Config("alembic.ini")
        command.upgrade(alembic_cfg, "head")
        logger.info("Database migrations completed successfully")
    except Exception as e:
        # Migrations may already have been applied by the deploy step
        logger.error(f"Failed to run migrations: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info(f"Starting {settings.APP_NAME}...")

    problems = settings.validate_required_secrets()
    if problems:
        if IS_PRODUCTION:
            raise RuntimeError("Invalid configuration: " + "; ".join(problems))
        for problem in problems:
            logger.warning(f"Configuration: {problem}")

    if IS_PRODUCTION:
        run_migrations()

    runtime = AuthRuntime.from_settings(settings)
    runtime.start()
    app.state.auth_runtime = runtime

    from app.core.scheduler import start_scheduler, shutdown_scheduler
    if settings.SCHEDULER_ENABLED:
        start_scheduler(runtime)

    logger.info(f"{settings.APP_NAME} started successfully")
    yield
    # Shutdown
    shutdown_scheduler()
    runtime.shutdown()
    logger.info(f"Shutting down {settings.APP_NAME}...")


app = FastAPI(
    title=settings.APP_NAME,
    description="Accounts, sign-in and multi-factor authentication for the storefront",
    version="1.0.0",
    lifespan=lifespan,
    # Disable docs in production
    docs_url=None if IS_PRODUCTION else "/docs",
    redoc_url=None if IS_PRODUCTION else "/redoc",
)

app.state.limiter = limiter


def error_body(message: str, code: str, **extra) -> dict:
    return {"error": {"message": message, "code": code, **extra}}


# Exception handlers
@app.exception_handler(AuthAPIException)
async def auth_api_exception_handler(request: Request, exc: AuthAPIException):
    """Handle the typed auth errors raised by services."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail), exc.error_code or "ERROR", **exc.extra),
        headers=exc.headers,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Unknown routes, wrong methods and other framework errors."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail), "HTTP_ERROR"),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Render pydantic validation failures in the common error shape."""
    fields = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    message = fields[0]["message"] if fields else "Invalid request"
    return JSONResponse(
        status_code=422,
        content=error_body(message, "VALIDATION_ERROR", fields=fields),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded):
    retry_after = exc.limit.limit.get_expiry()
    return JSONResponse(
        status_code=429,
        content=error_body(f"Rate limit exceeded: {exc.detail}", "RATE_LIMITED", retry_after=retry_after),
        headers={"Retry-After": str(retry_after)},
    )


@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
    """Handle database errors."""
    logger.error(f"Database error: {exc}")
    return JSONResponse(
        status_code=500,
        content=error_body("A database error occurred", "DATABASE_ERROR"),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=error_body("An unexpected error occurred", "INTERNAL_ERROR"),
    )

# Middleware (first added = innermost)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestValidationMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# Configure CORS with tightened settings
allowed_origins = [settings.FRONTEND_URL]
if not IS_PRODUCTION:
    # Allow localhost variations in development
    allowed_origins.extend([
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Accept",
        "Origin",
        "X-Requested-With",
        "X-Device-Name",
        "X-Token-Expiry",
        "X-Request-ID",
    ],
    expose_headers=["Retry-After", "X-Request-ID"],
    max_age=600,  # Cache preflight requests for 10 minutes
)

# Include routers
app.include_router(auth_router, prefix="/api")
app.include_router(mfa_router, prefix="/api")
app.include_router(recovery_codes_router, prefix="/api")
app.include_router(users_router, prefix="/api")


@app.get("/")
def root():
    return {"message": f"Welcome to {settings.APP_NAME}"}


@app.get("/health")
def health_check():
    """Health check endpoint for load balancers and monitoring."""
    health_status = {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "version": "1.0.0",
    }

    # Check database connectivity
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        health_status["status"] = "unhealthy"
        health_status["database"] = "disconnected"

    return health_status
