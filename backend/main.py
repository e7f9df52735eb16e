"""
Clinic Backend - Main Application Entry Point
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker

from app.core import logger, settings
from app.core.middleware import ActorMiddleware, AuditMiddleware
from app.db.audit_store import SqlAlchemyAuditStore
from app.db.session import SessionLocal
from app.api.routes import auth, users, audit
from app.services.audit import AuditEventLogger, AuditService


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management."""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} in {settings.APP_ENV} mode (audit enabled: {settings.AUDIT_ENABLED})")
    yield
    # Shutdown
    logger.info("Shutting down...")


def create_app(session_factory: sessionmaker = SessionLocal) -> FastAPI:
    """Build the application with its audit pipeline bound to a database."""
    app = FastAPI(
        title=settings.APP_NAME,
        description="Clinic management API with audit trail",
        version="1.0.0",
        lifespan=lifespan,
    )

    audit_service = AuditService(
        SqlAlchemyAuditStore(session_factory),
        export_limit=settings.AUDIT_EXPORT_LIMIT,
    )
    app.state.audit_service = audit_service
    app.state.audit_logger = AuditEventLogger(audit_service)

    # Last added runs first: CORS, then actor resolution, then audit
    app.add_middleware(AuditMiddleware, audit_service=audit_service)
    app.add_middleware(ActorMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API Routers
    app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
    app.include_router(users.router, prefix="/api/v1/users", tags=["Users"])
    app.include_router(audit.router, prefix="/api/v1/audit", tags=["Audit"])

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "env": settings.APP_ENV,
        }

    return app


app = create_app()
