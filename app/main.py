# ================================
# MAIN APPLICATION (main.py)
# ================================

from datetime import datetime, timezone
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.openapi.utils import get_openapi
from contextlib import asynccontextmanager

# Core imports
from app.config import settings
from app.core.exceptions import AppException
from app.core.middleware import (
    DatabaseSessionMiddleware,
    AuditMiddleware,
    SecurityHeadersMiddleware
)

# API Routes
from app.api import v1_router, API_VERSION, API_DESCRIPTION

import logging
import uvicorn

# ================================
# LOGGING CONFIGURATION
# ================================

logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# ================================
# APPLICATION LIFECYCLE
# ================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""

    # Startup
    logger.info(f"Starting {settings.APP_NAME}")
    await startup_tasks()

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}")
    await shutdown_tasks()

async def startup_tasks():
    """Tasks to run on application startup"""

    await initialize_database()

    await seed_default_rules()

    await create_initial_admin()

    await initialize_background_scheduler()

async def shutdown_tasks():
    """Tasks to run on application shutdown"""

    await stop_background_scheduler()

    from app.core.database import engine
    engine.dispose()

    logger.info("Application shutdown complete")

async def initialize_database():
    """Check the connection, then create tables (DEBUG) or run migrations"""
    try:
        from app.core.database import engine
        from sqlalchemy import text

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        logger.info("Database connection established")

        if settings.DEBUG:
            from app.models import Base
            Base.metadata.create_all(bind=engine)
            logger.info("Database tables created")
        else:
            await run_database_migrations()

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

async def run_database_migrations():
    """Run Alembic database migrations"""
    try:
        from alembic.config import Config
        from alembic import command

        alembic_cfg = Config("alembic.ini")
        command.upgrade(alembic_cfg, "head")

        logger.info("Database migrations completed")

    except Exception as e:
        logger.error(f"Database migration failed: {e}")
        raise

async def seed_default_rules():
    """Store the default reservation rules if none exist yet"""
    try:
        from app.core.database import SessionLocal
        from app.services.rule_service import RuleService

        with SessionLocal() as db:
            created = RuleService.ensure_default_rules(db)

        if created:
            logger.info(f"Seeded {created} default rules")

    except Exception as e:
        logger.error(f"Default rule seeding failed: {e}")
        # Rule lookups fall back to configured defaults

async def create_initial_admin():
    """Create initial admin user if configured"""

    if not settings.INITIAL_ADMIN_EMAIL:
        logger.info("No initial admin configured, skipping creation")
        return

    try:
        from app.core.database import SessionLocal
        from app.models.user import User

        with SessionLocal() as db:
            existing_admin = db.query(User).filter(
                User.email == settings.INITIAL_ADMIN_EMAIL
            ).first()

            if existing_admin:
                logger.info("Initial admin already exists")
                return

            admin = User(
                email=settings.INITIAL_ADMIN_EMAIL,
                name=settings.INITIAL_ADMIN_NAME,
                role="admin",
                is_active=True
            )

            db.add(admin)
            db.commit()

            logger.info(f"Initial admin created: {settings.INITIAL_ADMIN_EMAIL}")

    except Exception as e:
        logger.error(f"Initial admin creation failed: {e}")

async def initialize_background_scheduler():
    """Initialize and start the background task scheduler"""
    try:
        from app.core.scheduler import scheduler, initialize_scheduler

        initialize_scheduler()

        await scheduler.start()

        logger.info("Background scheduler started successfully")

    except Exception as e:
        logger.error(f"Failed to start background scheduler: {e}")

async def stop_background_scheduler():
    """Stop the background task scheduler"""
    try:
        from app.core.scheduler import scheduler

        await scheduler.stop()

    except Exception as e:
        logger.error(f"Error stopping background scheduler: {e}")

# ================================
# FASTAPI APPLICATION
# ================================

app = FastAPI(
    title=settings.APP_NAME,
    version=API_VERSION,
    description=API_DESCRIPTION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan
)

# ================================
# MIDDLEWARE CONFIGURATION
# ================================

# Security Headers
app.add_middleware(SecurityHeadersMiddleware)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Process-Time"]
)

# Audit Logging
app.add_middleware(AuditMiddleware)

# Request ID + DB session (outermost)
app.add_middleware(DatabaseSessionMiddleware)

# ================================
# EXCEPTION HANDLERS
# ================================

@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    """Handler für Application-spezifische Exceptions"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error_code": exc.error_code,
            "request_id": getattr(request.state, "request_id", None)
        }
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handler für Validierungsfehler"""
    return JSONResponse(
        status_code=422,
        content={
            "detail": jsonable_encoder(exc.errors()),
            "error_code": "VALIDATION_ERROR",
            "request_id": getattr(request.state, "request_id", None)
        }
    )

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handler für Standard HTTP Exceptions"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "request_id": getattr(request.state, "request_id", None)
        }
    )

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handler für unbehandelte Exceptions"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error" if not settings.DEBUG else str(exc),
            "error_code": "INTERNAL_ERROR",
            "request_id": getattr(request.state, "request_id", None)
        }
    )

# ================================
# HEALTH CHECK ENDPOINTS
# ================================

@app.get("/health", tags=["Health"])
async def health_check():
    """Basic health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": API_VERSION
    }

@app.get("/health/detailed", tags=["Health"])
async def detailed_health_check():
    """Health check with database and scheduler state"""
    from app.core.scheduler import scheduler
    from app.services.expiry_sweeper import expiry_sweeper

    health_status = {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": API_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {}
    }

    try:
        from app.core.database import engine
        from sqlalchemy import text

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "healthy"
    except Exception:
        health_status["checks"]["database"] = "unhealthy"
        health_status["status"] = "degraded"

    health_status["checks"]["scheduler"] = "running" if scheduler.running else "stopped"

    last = expiry_sweeper.last_result
    health_status["checks"]["last_expiry_sweep"] = last.finished_at.isoformat() if last else None

    return health_status

@app.get("/ready", tags=["Health"])
async def readiness_check():
    """Kubernetes readiness probe"""
    try:
        from app.core.database import engine
        from sqlalchemy import text

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        return {"status": "ready"}
    except Exception:
        raise HTTPException(status_code=503, detail="Service not ready")

# ================================
# API ROUTES
# ================================

app.include_router(v1_router)

# ================================
# ROOT ENDPOINT
# ================================

@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information"""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": API_VERSION,
        "docs_url": "/docs" if settings.DEBUG else None,
        "health_url": "/health",
        "available_endpoints": {
            "users": "/api/v1/users",
            "properties": "/api/v1/properties",
            "cart": "/api/v1/cart",
            "broker": "/api/v1/broker",
            "notifications": "/api/v1/notifications",
            "admin": "/api/v1/admin"
        }
    }

# ================================
# CUSTOM OPENAPI SCHEMA
# ================================

PUBLIC_PATHS = ["/", "/health", "/health/detailed", "/ready", "/docs", "/redoc", "/openapi.json"]

def custom_openapi():
    """OpenAPI schema with bearer auth on every non-public route"""
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=settings.APP_NAME,
        version=API_VERSION,
        description=API_DESCRIPTION,
        routes=app.routes,
    )

    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
            "description": "JWT Bearer token"
        }
    }

    for path, path_item in openapi_schema["paths"].items():
        if path in PUBLIC_PATHS:
            continue

        for method, operation in path_item.items():
            if method in ["get", "post", "put", "delete", "patch"]:
                operation["security"] = [{"BearerAuth": []}]

    app.openapi_schema = openapi_schema
    return app.openapi_schema

app.openapi = custom_openapi

# ================================
# DEVELOPMENT SERVER
# ================================

if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
        access_log=True
    )
