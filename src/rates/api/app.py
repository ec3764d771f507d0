"""FastAPI application factory for the rates control API."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from rates.api import routes


def create_api_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to inject startup/shutdown logic.

    Route handlers read app.state.orchestrator and app.state.store, which
    the caller (or the lifespan) must set.
    """
    app = FastAPI(
        title="Rates Service",
        lifespan=lifespan,
    )
    app.include_router(routes.router, prefix="/api")
    return app
