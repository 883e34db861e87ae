"""
Core Infrastructure for tts-stream.

This package provides foundational components:
    - config.py: Configuration loading and validation
    - logging/: Structured logging with numeric levels
"""
