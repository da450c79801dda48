"""FastAPI application factory for the trade pipeline HTTP API."""

from typing import Any

from fastapi import FastAPI

from tradecharts.web.routes import api


def create_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to open and close the pipeline; tests set
                  ``app.state.pipeline`` directly instead.

    Returns:
        Configured FastAPI application with the JSON API mounted at /api.
    """
    app = FastAPI(
        title="Crosschain Trade Candles",
        lifespan=lifespan,
    )
    app.state.pipeline = None
    app.include_router(api.router, prefix="/api")
    return app
