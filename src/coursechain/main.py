# src/coursechain/main.py
"""Main entry point for the CourseChain application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from coursechain import __version__
from coursechain.api.v1 import audit_router, auth_router, users_router
from coursechain.core.logging import configure_logging
from coursechain.core.settings import settings
from coursechain.db.session import SessionLocal
from coursechain.services.container import ServiceContainer, build_container

logger = logging.getLogger(__name__)

DESCRIPTION = "Course platform API with Sign-In with Ethereum authentication"

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description=DESCRIPTION,
    version=__version__,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    expose_headers=[
        "X-Cache",
        "X-RateLimit-Limit",
        "X-RateLimit-Remaining",
        "X-RateLimit-Reset",
        "Retry-After",
    ],
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(auth_router, prefix="/api/v1")
app.include_router(users_router, prefix="/api/v1")
app.include_router(audit_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    configure_logging(settings.log_level)
    container = build_container(settings, SessionLocal)
    await container.start()
    app.state.container = container
    logger.info(
        "%s %s started (cache=%s, audit=%s)",
        settings.app_name,
        __version__,
        settings.cache_backend,
        "on" if container.audit is not None else "off",
    )


@app.on_event("shutdown")
async def on_shutdown() -> None:
    container: ServiceContainer | None = getattr(app.state, "container", None)
    if container:
        await container.stop()
    app.state.container = None


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": __version__,
        "description": DESCRIPTION,
        "docs": "/docs",
        "redoc": "/redoc",
    }


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("coursechain.main:app", host="0.0.0.0", port=8000, reload=settings.debug)


if __name__ == "__main__":
    run()
