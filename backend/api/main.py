"""
Stocktruth API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.requests import Request

from core.config import get_settings
from core.errors import DomainError
from core.logging import configure_logging

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    configure_logging()
    logger.info("Stocktruth API starting up", version=settings.app_version, env=settings.app_env)
    yield
    logger.info("Stocktruth API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Warehouse inventory discrepancy detection, root-cause analysis and agent tools",
    lifespan=lifespan,
)


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Error handlers ─────────────────────────────────────────────────────────


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("api.database_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"detail": "Internal database error"})


# Import and register routers
from api.v1.routers import actions, agent, ingestion, reports, root_cause, truth  # noqa: E402

app.include_router(ingestion.router)
app.include_router(truth.router)
app.include_router(root_cause.router)
app.include_router(actions.router)
app.include_router(agent.router)
app.include_router(reports.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
