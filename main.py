import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from geotrack.config import settings
from geotrack.database import Base, engine
from geotrack.exception_handlers import register_exception_handlers
from geotrack.middleware.logging import StructuredLoggingMiddleware, setup_structured_logging
from geotrack.routes import location, monitoring, realtime
from geotrack.scheduler import install_background_jobs, scheduler
from geotrack.services.audit_service import get_audit_logger

setup_structured_logging(log_level="DEBUG" if settings.debug else "INFO", json_format=settings.log_json)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Consent-gated employee location tracking",
        debug=settings.debug,
        version=settings.app_version,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(StructuredLoggingMiddleware)

    register_exception_handlers(app)

    app.include_router(location.router, prefix="/api/v1/location")
    app.include_router(realtime.router, prefix="/api/v1/location")
    app.include_router(monitoring.router)

    if settings.debug:
        logger.info(f"Running in {settings.environment} mode")
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    @app.on_event("startup")
    async def startup_event():
        logger.info("Starting up the application...")
        if settings.debug or settings.database_url.startswith("sqlite"):
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created (if not existing).")

        install_background_jobs()
        scheduler.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Shutting down the application...")
        if scheduler.running:
            scheduler.shutdown(wait=False)
        flushed = await get_audit_logger().flush_pending()
        if flushed:
            logger.info(f"Flushed {flushed} pending audit entries on shutdown")

    @app.get("/", tags=["Root"])
    async def root():
        return {"message": f"Welcome to the {settings.app_name} API"}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
