"""
Nasab FastAPI application.

Serves the family-tree edit API under ``/api``. Integrity scans and push
deliveries run on the RQ worker (``python -m app.worker.worker``).
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from app.api import api_router
from app.config import settings
from app.database import database_reachable, init_db

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    init_db()
    logger.info("%s %s started (lease backend: %s)", settings.app_name, settings.app_version, settings.lease_backend)
    yield


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

app.include_router(api_router, prefix="/api")


@app.get("/health")
async def health() -> dict:
    """Liveness plus a database ping."""
    database_ok = database_reachable()
    return {
        "status": "healthy" if database_ok else "degraded",
        "version": settings.app_version,
        "database": "ok" if database_ok else "unreachable",
    }
