# ============================================================================
# ASSET TWIN - MAIN APPLICATION
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Core - FastAPI application entry point
# PURPOSE: Wire storage backend, services and routes
# CREATED: 13 OCT 2026
# ============================================================================
"""
Asset Twin Main Application

FastAPI application that:
1. Selects the storage backend (ASSET_STORE_BACKEND=memory|postgres)
2. Wires AssetTwinService over the chosen repositories and lock manager
3. Serves the asset hierarchy API

Usage:
    uvicorn main:app --host 0.0.0.0 --port 8000
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from __version__ import __version__, BUILD_DATE, EPOCH
from api.asset_routes import get_asset_service, router as asset_router, set_asset_services
from core.config import StorageBackend, get_defaults
from core.logging import configure_logging, get_logger
from infrastructure.locking import AdvisoryLockManager, StripedLockManager
from repositories import (
    AssetRepository,
    InMemoryAssetRepository,
    InMemoryMappingRegistry,
    InMemoryStateRepository,
    MappingRepository,
    StateRepository,
    close_pool,
    deploy_schema,
    get_pool,
    init_lock_pool,
    init_pool,
)
from services import AssetTwinService

configure_logging(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    json_output=os.environ.get("LOG_FORMAT", "").lower() == "json",
)
logger = get_logger(__name__)


async def build_service() -> AssetTwinService:
    """Construct the twin service for the configured backend."""
    defaults = get_defaults()

    if defaults.storage.backend == StorageBackend.MEMORY:
        logger.info("Using in-memory asset store")
        return AssetTwinService.build(
            assets=InMemoryAssetRepository(),
            states=InMemoryStateRepository(),
            mappings=InMemoryMappingRegistry(),
            locks=StripedLockManager(),
            defaults=defaults,
        )

    pool = await init_pool(defaults.storage)
    if os.environ.get("AUTO_BOOTSTRAP_SCHEMA", "").lower() == "true":
        count = await deploy_schema(pool)
        logger.info(f"Schema bootstrap executed {count} statements")

    logger.info(f"Using PostgreSQL asset store (schema {defaults.storage.schema_name})")
    return AssetTwinService.build(
        assets=AssetRepository(pool),
        states=StateRepository(pool),
        mappings=MappingRepository(pool),
        locks=AdvisoryLockManager(await init_lock_pool(defaults.storage)),
        defaults=defaults,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Initializes services on startup, cleans up on shutdown.
    """
    logger.info(f"Starting Asset Twin v{__version__} (Epoch {EPOCH}, Build {BUILD_DATE})")

    service = await build_service()
    set_asset_services(service)
    logger.info("Asset services initialized")

    yield

    logger.info("Shutting down Asset Twin...")
    set_asset_services(None)
    if get_defaults().storage.backend == StorageBackend.POSTGRES:
        await close_pool()
    logger.info("Asset Twin stopped")


# Create FastAPI app
app = FastAPI(
    title="Asset Twin",
    description=f"Epoch {EPOCH} asset hierarchy and live state rollups",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(asset_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Asset Twin",
        "version": __version__,
        "epoch": EPOCH,
        "build_date": BUILD_DATE,
        "backend": get_defaults().storage.backend.value,
        "status": "running",
        "docs": "/docs",
    }


@app.get("/livez")
async def livez():
    return {"status": "ok"}


@app.get("/readyz")
async def readyz():
    """Ready once services are wired and, for postgres, the pool answers."""
    if get_asset_service() is None:
        return JSONResponse(status_code=503, content={"status": "starting"})
    if get_defaults().storage.backend == StorageBackend.POSTGRES:
        try:
            pool = await get_pool()
            async with pool.connection() as conn:
                await conn.execute("SELECT 1")
        except Exception as e:
            logger.warning(f"Readiness check failed: {e}")
            return JSONResponse(status_code=503, content={"status": "database_unavailable"})
    return {"status": "ready"}


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=os.environ.get("RELOAD", "false").lower() == "true",
    )
