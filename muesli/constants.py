"""Constants for Muesli."""

import os
from datetime import datetime

# Gemini Models
GEMINI_MODEL_SYNTHESIS = "gemini-2.5-flash"
GEMINI_MODEL_TRANSCRIPTION = "gemini-2.5-flash"  # 65K output tokens (2.0-flash only has 8K)

# Audio
AUDIO_CHUNK_SIZE = 4096  # frames per device callback
SAMPLE_WIDTH_BYTES = 2  # 16-bit PCM
WAVEFORM_BINS = 800

# Upload formats understood by the converter
UPLOAD_FORMATS = ("wav", "flac", "opus")
MIME_TYPES = {
    "wav": "audio/wav",
    "flac": "audio/flac",
    "opus": "audio/ogg",
}
FILE_EXTENSIONS = {
    "wav": ".wav",
    "flac": ".flac",
    "opus": ".ogg",
}

# Note types
NOTE_TYPE_LABELS = {
    "text": "Text note",
    "recording": "Voice recording",
}


def get_now() -> datetime:
    """Return the current datetime, or a spoofed date if MUESLI_DATE_OVERRIDE is set.

    Set MUESLI_DATE_OVERRIDE to an ISO date (e.g. '2026-03-02') to run as if it
    were a different day. Time-of-day is preserved from the real clock.
    """
    override = os.environ.get("MUESLI_DATE_OVERRIDE")
    if override:
        try:
            fake_date = datetime.fromisoformat(override).date()
            real_now = datetime.now()
            return real_now.replace(year=fake_date.year, month=fake_date.month, day=fake_date.day)
        except ValueError:
            pass
    return datetime.now()
