import io
import struct
import wave

import pytest

from muesli.audio import analyse_audio


def make_wav(samples, sample_rate=1000, channels=1):
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(struct.pack(f"<{len(samples)}h", *samples))
    return buffer.getvalue()


def test_silence_between_speech_is_detected():
    # 1s loud, 3s silent, 1s loud at 1 kHz
    samples = [20000] * 1000 + [0] * 3000 + [20000] * 1000
    preview = analyse_audio(make_wav(samples), n_bins=50)

    assert preview.duration_seconds == pytest.approx(5.0)
    assert len(preview.waveform) == 50
    assert len(preview.silent_regions) == 1
    region = preview.silent_regions[0]
    assert region.start_seconds == pytest.approx(1.0)
    assert region.end_seconds == pytest.approx(4.0)
    assert preview.is_silent_at(2.5)
    assert not preview.is_silent_at(0.5)


def test_short_pauses_are_not_silent_regions():
    samples = [20000] * 1000 + [0] * 500 + [20000] * 1000
    preview = analyse_audio(make_wav(samples))
    assert preview.silent_regions == ()


def test_stereo_uses_loudest_channel():
    # Left silent, right at full scale
    samples = [0, 32767] * 100
    preview = analyse_audio(make_wav(samples, channels=2), n_bins=10)

    assert preview.n_channels == 2
    assert preview.samples_per_channel == 100
    assert preview.peak == pytest.approx(1.0)


def test_scrub_helpers():
    preview = analyse_audio(make_wav([1000] * 2000), n_bins=100)

    assert preview.seconds_at(0.5) == pytest.approx(1.0)
    assert preview.seconds_at(2.0) == pytest.approx(2.0)
    assert preview.bin_at(0.0) == 0
    assert preview.bin_at(1.0) == 50
    assert preview.bin_at(99.0) == 99


def test_empty_recording():
    preview = analyse_audio(make_wav([]))
    assert preview.duration_seconds == 0.0
    assert preview.waveform == ()
    assert preview.peak == 0.0
    assert preview.bin_at(1.0) == 0


def test_garbage_bytes_return_none():
    assert analyse_audio(b"not a wav file") is None
