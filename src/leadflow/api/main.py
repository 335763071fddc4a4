"""FastAPI application factory for the lead distribution API."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..core.config import DistributionConfig
from .config import settings
from .dependencies import services_for
from .middleware.cors import ALLOWED_ORIGINS
from .routes.health import router as health_router
from .routes.queue import router as queue_router
from .routes.leads import router as leads_router, realtors_router
from .routes.teams import router as teams_router
from .routes.jobs import router as jobs_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Leadflow API")
    # Opening the database applies pending migrations
    services = services_for(app)
    logger.info(f"Database ready at {services.db.db_path}")

    runner = None
    if settings.jobs_enabled:
        try:
            from ..tasks.scheduler import DistributionTaskRunner
            runner = DistributionTaskRunner(db=services.db, config=services.config)
            runner.start()
        except Exception as e:
            logger.warning(f"Task runner failed to start: {e}")
            runner = None

    yield

    if runner:
        runner.stop()
    logger.info("Leadflow API shutting down")


def create_app(
    db_path: Optional[str] = None,
    distribution_config: Optional[DistributionConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Leadflow API",
        description="Realtor queue and lead distribution backend",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.db_path = db_path
    app.state.distribution_config = distribution_config
    app.state.services = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(queue_router)
    app.include_router(leads_router)
    app.include_router(realtors_router)
    app.include_router(teams_router)
    app.include_router(jobs_router)

    return app


# Module-level app instance for uvicorn
app = create_app()
