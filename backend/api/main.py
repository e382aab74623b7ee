"""
RebalanceOps API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import get_settings
from rebalance.exceptions import (
    ConstraintBoundsError,
    ConstraintTypeError,
    EngineRunError,
    NoSnapshotError,
    UnknownConstraintError,
)

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("RebalanceOps API starting up", version=settings.app_version)
    yield
    logger.info("RebalanceOps API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Inventory rebalancing policy, suggestion review and approval service",
    lifespan=lifespan,
)


# ─── Domain error mapping ───────────────────────────────────────────────────


@app.exception_handler(UnknownConstraintError)
async def unknown_constraint_handler(request: Request, exc: UnknownConstraintError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConstraintTypeError)
@app.exception_handler(ConstraintBoundsError)
async def invalid_constraint_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(NoSnapshotError)
async def no_snapshot_handler(request: Request, exc: NoSnapshotError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(EngineRunError)
async def engine_error_handler(request: Request, exc: EngineRunError):
    logger.error("engine.request_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=502, content={"detail": str(exc)})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import constraints, runs, stores, suggestions

app.include_router(constraints.router)
app.include_router(suggestions.router)
app.include_router(runs.router)
app.include_router(stores.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for Cloud Run / load balancers."""
    return {"status": "healthy", "version": settings.app_version}
