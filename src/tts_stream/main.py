"""
FastAPI Application Entry Point.

Creates the FastAPI application for the tts-stream session API.

Usage:
    # Run with uvicorn
    uvicorn tts_stream.main:app --host 0.0.0.0 --port 8000

    # Or use the module directly
    python -m uvicorn tts_stream.main:app --reload
"""

from __future__ import annotations

from fastapi import FastAPI

from tts_stream import __version__
from tts_stream.api.dependencies import shutdown_coordinator
from tts_stream.api.routes import router
from tts_stream.core.logging import configure_logging


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    This factory function:
        1. Configures structured logging based on environment settings
        2. Creates a FastAPI instance with the service title
        3. Registers the session router
        4. Stops the session and closes the endpoint client on shutdown
    """
    # Initialize structured logging (reads TTS_STREAM_LOG_LEVEL env var)
    configure_logging()

    app = FastAPI(title="tts-stream", version=__version__)
    app.include_router(router)
    app.add_event_handler("shutdown", shutdown_coordinator)

    return app


# Global application instance for ASGI servers (uvicorn, gunicorn, etc.)
app = create_app()
