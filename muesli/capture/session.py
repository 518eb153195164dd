"""Recording session state and the finalized audio it produces."""

import io
import sys
import wave
from array import array
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from muesli.constants import SAMPLE_WIDTH_BYTES
from muesli.errors import ValidationError


class CaptureState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPED = "stopped"  # finalized, preview available
    COMMITTED = "committed"
    DISCARDED = "discarded"


@dataclass(frozen=True)
class QualityProfile:
    """Sample rate, channel count and bit rate tier for one capture."""

    name: str
    sample_rate: int
    channels: int
    bit_rate: int

    @classmethod
    def named(cls, name: str) -> "QualityProfile":
        try:
            return QUALITY_PROFILES[name]
        except KeyError:
            raise ValidationError(
                f"Unknown quality profile: {name}. Use one of {', '.join(QUALITY_PROFILES)}."
            ) from None


STANDARD = QualityProfile("standard", sample_rate=44100, channels=1, bit_rate=128_000)
HIGH = QualityProfile("high", sample_rate=48000, channels=2, bit_rate=256_000)
QUALITY_PROFILES = {p.name: p for p in (STANDARD, HIGH)}


@dataclass
class RecordingSession:
    """Live, not-yet-persisted state of one capture. Owned by the controller."""

    profile: QualityProfile
    started_at: datetime
    start_time: float  # controller clock
    chunks: list[bytes] = field(default_factory=list)
    paused_total: float = 0.0
    pause_started: float | None = None

    @property
    def byte_count(self) -> int:
        return sum(len(c) for c in self.chunks)

    def elapsed(self, now: float) -> float:
        """Recorded time so far, excluding paused intervals."""
        paused = self.paused_total
        if self.pause_started is not None:
            paused += now - self.pause_started
        return max(0.0, now - self.start_time - paused)


@dataclass(frozen=True)
class CapturedAudio:
    """Immutable finalized recording."""

    data: bytes
    mime_type: str
    sample_rate: int
    channels: int
    duration_seconds: float
    started_at: datetime
    profile: QualityProfile

    @property
    def filename(self) -> str:
        return f"recording-{self.started_at:%Y%m%d_%H%M%S}.wav"

    @property
    def caption(self) -> str:
        return f"Recording from {self.started_at:%Y-%m-%d %H:%M:%S} ({self.duration_seconds:.1f}s)"


@dataclass(frozen=True)
class CommitResult:
    """What a committed capture hands to the caller."""

    file_url: str
    caption: str
    duration_seconds: float
    audio: CapturedAudio


def finalize_session(session: RecordingSession, duration_seconds: float) -> CapturedAudio:
    """Wrap the buffered PCM chunks in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(session.profile.channels)
        wf.setsampwidth(SAMPLE_WIDTH_BYTES)
        wf.setframerate(session.profile.sample_rate)
        wf.writeframes(b"".join(session.chunks))
    return CapturedAudio(
        data=buffer.getvalue(),
        mime_type="audio/wav",
        sample_rate=session.profile.sample_rate,
        channels=session.profile.channels,
        duration_seconds=duration_seconds,
        started_at=session.started_at,
        profile=session.profile,
    )


def chunk_level(chunk: bytes) -> float:
    """Peak level of a 16-bit PCM chunk, 0.0-1.0."""
    if len(chunk) < SAMPLE_WIDTH_BYTES:
        return 0.0
    usable = len(chunk) - len(chunk) % SAMPLE_WIDTH_BYTES
    samples = array("h", chunk[:usable])
    if sys.byteorder == "big":
        samples.byteswap()
    return min(1.0, max(abs(s) for s in samples) / 32767.0)
