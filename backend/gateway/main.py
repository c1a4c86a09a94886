"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gateway.api.deps import check_route_permissions
from gateway.api.v1 import analysis, requests, submissions, versions
from gateway.bootstrap import build_components
from gateway.core.config import settings
from gateway.core.logging import get_logger, setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks."""
    setup_logging(
        "DEBUG" if settings.APP_ENV == "development" else "INFO",
        json_output=settings.APP_ENV != "development",
    )
    logger = get_logger("startup")
    logger.info("Application starting", env=settings.APP_ENV, version=settings.SNAPSHOT_API_VERSION)

    from gateway.db.session import async_session, engine

    components = build_components(settings, session_factory=async_session)
    app.state.registry = components.registry
    app.state.users = components.users
    app.state.invoker = components.invoker
    app.state.processor = components.processor
    app.state.permissions = components.permissions
    app.state.upload_dir = settings.UPLOAD_TMP_DIR
    yield
    logger.info("Application shutting down")
    await engine.dispose()


app = FastAPI(
    title="Snapshot Gateway API",
    description="Versioned document analysis with a per-request audit trail",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

API_PREFIX = "/api/v1"
PERMISSIONS = [Depends(check_route_permissions)]
app.include_router(analysis.router, prefix=API_PREFIX, dependencies=PERMISSIONS)
app.include_router(versions.router, prefix=API_PREFIX, dependencies=PERMISSIONS)
app.include_router(submissions.router, prefix=API_PREFIX, dependencies=PERMISSIONS)
app.include_router(requests.router, prefix=API_PREFIX, dependencies=PERMISSIONS)


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Public health-check endpoint."""
    return {"status": "ok", "env": settings.APP_ENV}
