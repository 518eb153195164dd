"""Audio processing utilities."""

from muesli.audio.converter import encode_audio, mime_type_for
from muesli.audio.waveform import SilentRegion, WaveformPreview, analyse_audio

__all__ = ["SilentRegion", "WaveformPreview", "analyse_audio", "encode_audio", "mime_type_for"]
