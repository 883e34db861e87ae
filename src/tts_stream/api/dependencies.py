"""
FastAPI Dependency Injection Providers.

Shared resources for the route handlers:
    1. get_settings() - Loads and caches application configuration
    2. get_coordinator() - Creates/returns the process-wide coordinator

The API serves one streaming session per process, so the coordinator is
a singleton. It is created lazily on first use; tests replace it with
``app.dependency_overrides[get_coordinator]``.
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from tts_stream.core.config import Settings, load_settings
from tts_stream.services.pipeline import PipelineCoordinator, create_coordinator

_COORDINATOR: Optional[PipelineCoordinator] = None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and cache application settings.

    The path comes from TTS_STREAM_SETTINGS (default
    ``config/settings.yaml``); a missing file yields defaults.
    """
    return load_settings(os.getenv("TTS_STREAM_SETTINGS", "config/settings.yaml"), required=False)


def get_coordinator() -> PipelineCoordinator:
    """
    Get the singleton PipelineCoordinator.

    Raises:
        ConfigValidationError: If the settings are invalid.
    """
    global _COORDINATOR
    if _COORDINATOR is None:
        settings = get_settings()
        _COORDINATOR = create_coordinator(settings.stream_config(), settings.credentials)
    return _COORDINATOR


async def shutdown_coordinator() -> None:
    """Stop the session and release the endpoint client on shutdown."""
    global _COORDINATOR
    if _COORDINATOR is not None:
        await _COORDINATOR.close()
        _COORDINATOR = None
