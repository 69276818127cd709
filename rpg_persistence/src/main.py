"""
Persistence service entrypoint.
Builds the persistence engine and exposes the admin and monitoring endpoints.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Response

from rpg_persistence.src.api import admin
from rpg_persistence.src.core.logging_config import get_logger, setup_logging
from rpg_persistence.src.core.metrics import get_metrics, get_metrics_content_type, init_metrics
from rpg_persistence.src.services.engine import PersistenceEngine

# Initialize logging and metrics as early as possible
setup_logging()
init_metrics()
logger = get_logger(__name__)

VERSION = "0.1.0"


def create_app(engine: Optional[PersistenceEngine] = None) -> FastAPI:
    """Build the application around an engine (a default one when not given)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Persistence service starting up", extra={"version": VERSION})
        persistence = engine or PersistenceEngine()
        await persistence.start()
        app.state.persistence = persistence
        yield
        logger.info("Persistence service shutting down")
        await persistence.stop()

    app = FastAPI(
        title="RPG Persistence Service",
        description="Player and world-state persistence engine.",
        version=VERSION,
        lifespan=lifespan,
    )

    @app.get("/metrics", summary="Prometheus metrics endpoint", tags=["Monitoring"])
    def get_metrics_endpoint():
        """Service metrics in Prometheus format."""
        logger.debug("Metrics endpoint accessed")
        return Response(content=get_metrics(), media_type=get_metrics_content_type())

    @app.get("/", summary="Health check endpoint", tags=["Status"])
    def read_root():
        """Root endpoint for health checks."""
        running = getattr(app.state, "persistence", None)
        return {"status": "ok" if running is not None and running.running else "starting"}

    @app.get("/version", summary="Get service version", tags=["Status"])
    def read_version():
        return {"version": VERSION}

    app.include_router(admin.router, prefix="/admin/persistence", tags=["Persistence"])
    return app


app = create_app()
