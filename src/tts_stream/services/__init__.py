"""
tts-stream Services Layer.

This package provides the orchestration layer that sits between the
front ends (CLI, API) and the synthesis/playback components.

Components:
    - pipeline.py: PipelineCoordinator (segmentation, look-ahead fetching,
      gapless scheduling, session control, status stream)
"""
from .pipeline import (
    PipelineCoordinator,
    PipelineStatus,
    Segment,
    SegmentStatus,
    StatusUpdate,
    VoiceParams,
    create_coordinator,
    create_output,
)

__all__ = [
    "PipelineCoordinator",
    "PipelineStatus",
    "Segment",
    "SegmentStatus",
    "StatusUpdate",
    "VoiceParams",
    "create_coordinator",
    "create_output",
]
