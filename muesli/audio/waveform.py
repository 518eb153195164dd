"""Waveform preview for finalized recordings.

Extracts downsampled peak amplitudes and silent regions from WAV bytes so a
caller can draw and scrub a recording before committing it. Uses the wave
stdlib module; nothing here holds authoritative state.
"""

import io
import logging
import struct
import wave
from collections.abc import Sequence
from dataclasses import dataclass, field

from muesli.constants import WAVEFORM_BINS

logger = logging.getLogger("muesli")

# Silence detection defaults
SILENCE_AMPLITUDE_THRESHOLD = 0.01  # Fraction of max amplitude
SILENCE_MIN_DURATION_SECONDS = 2.0  # Min seconds to count as a silent region


@dataclass(frozen=True)
class SilentRegion:
    """A region of silence in a recording."""

    start_seconds: float
    end_seconds: float

    @property
    def duration(self) -> float:
        return self.end_seconds - self.start_seconds


@dataclass(frozen=True)
class WaveformPreview:
    """Analysis of a finalized recording."""

    duration_seconds: float
    sample_rate: int
    n_channels: int
    samples_per_channel: int
    # Downsampled peak amplitudes, normalised to 0.0-1.0.
    # One value per visual "bin" (the number of bins is caller-controlled).
    waveform: tuple[float, ...] = ()
    silent_regions: tuple[SilentRegion, ...] = field(default_factory=tuple)

    @property
    def peak(self) -> float:
        return max(self.waveform, default=0.0)

    def seconds_at(self, fraction: float) -> float:
        """Scrub position in seconds for a 0.0-1.0 fraction of the track."""
        fraction = min(1.0, max(0.0, fraction))
        return fraction * self.duration_seconds

    def bin_at(self, seconds: float) -> int:
        """Index of the waveform bin covering ``seconds``."""
        if not self.waveform or self.duration_seconds <= 0:
            return 0
        seconds = min(self.duration_seconds, max(0.0, seconds))
        index = int(seconds / self.duration_seconds * len(self.waveform))
        return min(index, len(self.waveform) - 1)

    def is_silent_at(self, seconds: float) -> bool:
        return any(r.start_seconds <= seconds < r.end_seconds for r in self.silent_regions)


def analyse_audio(
    data: bytes,
    n_bins: int = WAVEFORM_BINS,
    silence_threshold: float = SILENCE_AMPLITUDE_THRESHOLD,
    silence_min_seconds: float = SILENCE_MIN_DURATION_SECONDS,
) -> WaveformPreview | None:
    """Analyse WAV bytes, returning waveform data and silence regions.

    Args:
        data: A complete WAV file in memory.
        n_bins: Number of waveform bins to return (controls visual resolution).
        silence_threshold: Amplitude fraction (0-1) below which audio is "silent".
        silence_min_seconds: Minimum duration for a silence region to be reported.

    Returns:
        WaveformPreview, or None if the bytes are not a readable WAV file.
    """
    try:
        with wave.open(io.BytesIO(data), "rb") as wf:
            n_channels = wf.getnchannels()
            sample_rate = wf.getframerate()
            n_frames = wf.getnframes()
            sample_width = wf.getsampwidth()

            if n_frames == 0:
                return WaveformPreview(
                    duration_seconds=0.0,
                    sample_rate=sample_rate,
                    n_channels=n_channels,
                    samples_per_channel=0,
                )

            duration = n_frames / sample_rate
            raw = wf.readframes(n_frames)
    except (wave.Error, EOFError) as e:
        logger.error("Failed to read WAV data: %s", e)
        return None

    # Unpack samples (support 16-bit and 32-bit)
    samples: Sequence[int]
    if sample_width == 2:
        samples = struct.unpack(f"<{n_frames * n_channels}h", raw)
        max_val = 32767.0
    elif sample_width == 4:
        samples = struct.unpack(f"<{n_frames * n_channels}i", raw)
        max_val = 2147483647.0
    else:
        logger.error("Unsupported sample width: %d", sample_width)
        return None

    # Mix down to mono by taking max absolute amplitude across channels per frame
    if n_channels > 1:
        amplitudes = [
            max(abs(s) for s in samples[i : i + n_channels]) / max_val
            for i in range(0, len(samples), n_channels)
        ]
    else:
        amplitudes = [abs(s) / max_val for s in samples]

    # Build waveform bins (peak amplitude per bin)
    frames_per_bin = max(1, len(amplitudes) // n_bins)
    waveform = [
        max(amplitudes[i : i + frames_per_bin])
        for i in range(0, len(amplitudes), frames_per_bin)
    ][:n_bins]

    silent_regions = _detect_silence(amplitudes, sample_rate, silence_threshold, silence_min_seconds)

    return WaveformPreview(
        duration_seconds=duration,
        sample_rate=sample_rate,
        n_channels=n_channels,
        samples_per_channel=n_frames,
        waveform=tuple(min(1.0, v) for v in waveform),
        silent_regions=tuple(silent_regions),
    )


def _detect_silence(
    amplitudes: list[float],
    sample_rate: int,
    threshold: float,
    min_duration_seconds: float,
) -> list[SilentRegion]:
    """Detect silent regions in amplitude data."""
    regions: list[SilentRegion] = []
    silence_start: int | None = None

    for i, amp in enumerate(amplitudes):
        if amp < threshold:
            if silence_start is None:
                silence_start = i
        elif silence_start is not None:
            if (i - silence_start) / sample_rate >= min_duration_seconds:
                regions.append(
                    SilentRegion(
                        start_seconds=silence_start / sample_rate,
                        end_seconds=i / sample_rate,
                    )
                )
            silence_start = None

    # Handle silence extending to end of recording
    if silence_start is not None:
        if (len(amplitudes) - silence_start) / sample_rate >= min_duration_seconds:
            regions.append(
                SilentRegion(
                    start_seconds=silence_start / sample_rate,
                    end_seconds=len(amplitudes) / sample_rate,
                )
            )

    return regions
