"""
FastAPI REST API Layer for tts-stream.

This package defines the HTTP endpoints that drive a streaming session:
    - routes.py: Session control, status and export endpoints
    - schemas.py: Request/response Pydantic models
    - dependencies.py: FastAPI dependency injection
"""
