"""FastAPI application."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from .config import settings
from .database import SessionLocal
from .domain_errors import DomainError, InfrastructureFailure
from .problem_details import build_infrastructure_problem_response, build_problem_details_response
from .routers import reminders, requirements

logger = logging.getLogger(__name__)

# Create app
app = FastAPI(
    title="Compliance Reminders",
    version="1.0.0",
    description="Backend API for subcontractor compliance documents and reminders"
)

# Production safety checks
if settings.ENV.lower() == "production" and not settings.cors_origins:
    raise RuntimeError("ALLOWED_ORIGINS must be set in production (explicit frontend origin required).")
if settings.ENV.lower() == "production" and any(origin.strip() == "*" for origin in settings.cors_origins):
    raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard when using credentials).")
if settings.ENV.lower() == "production" and not settings.EMAIL_API_KEY:
    logger.warning("EMAIL_API_KEY is not set; every reminder send will fail and be retried.")

# CORS
cors_methods = ["GET", "POST", "OPTIONS"]
cors_headers = ["Authorization", "Content-Type"]
if settings.ENV.lower() != "production":
    cors_headers = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=cors_methods,
    allow_headers=cors_headers,
)


@app.exception_handler(DomainError)
async def _handle_domain_error(_: Request, exc: DomainError):
    return build_problem_details_response(exc)


@app.exception_handler(InfrastructureFailure)
async def _handle_infrastructure_failure(_: Request, exc: InfrastructureFailure):
    return build_infrastructure_problem_response(exc)


# Include routers
app.include_router(requirements.router, prefix="/api/v1")
app.include_router(reminders.router, prefix="/api/v1")


@app.get("/api/v1/system/health")
def health_check():
    """Health check endpoint."""
    database = "ok"
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check: database unreachable")
        database = "error"
    finally:
        db.close()
    return {
        "status": "ok" if database == "ok" else "degraded",
        "version": "1.0.0",
        "database": database,
    }


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "Compliance Reminders API",
        "version": "1.0.0",
        "docs": "/docs"
    }
