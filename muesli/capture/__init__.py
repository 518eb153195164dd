"""Live audio capture: sources, sessions and the capture controller."""

from muesli.capture.controller import CaptureController
from muesli.capture.session import (
    HIGH,
    QUALITY_PROFILES,
    STANDARD,
    CapturedAudio,
    CaptureState,
    CommitResult,
    QualityProfile,
)
from muesli.capture.source import MediaSource, SoundDeviceSource, list_input_devices

__all__ = [
    "HIGH",
    "QUALITY_PROFILES",
    "STANDARD",
    "CaptureController",
    "CaptureState",
    "CapturedAudio",
    "CommitResult",
    "MediaSource",
    "QualityProfile",
    "SoundDeviceSource",
    "list_input_devices",
]
