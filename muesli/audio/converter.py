"""Audio format conversion utilities.

Transcodes finalized WAV recordings to FLAC or Opus before upload.
Uses ffmpeg over stdin/stdout pipes so nothing touches the disk.
"""

import asyncio
import logging
import shutil

from muesli.constants import MIME_TYPES

logger = logging.getLogger("muesli")

# Default compression format
# WAV is uploaded untouched; FLAC and Opus need ffmpeg
DEFAULT_FORMAT = "wav"
ENCODE_TIMEOUT_SECONDS = 300


def mime_type_for(format: str) -> str:
    return MIME_TYPES.get(format, "application/octet-stream")


def _ffmpeg_command(format: str, bit_rate: int) -> list[str] | None:
    cmd = ["ffmpeg", "-hide_banner", "-loglevel", "error", "-f", "wav", "-i", "pipe:0"]
    if format == "flac":
        # FLAC: lossless compression
        cmd.extend(["-c:a", "flac", "-compression_level", "8", "-f", "flac"])
    elif format == "opus":
        # Opus: lossy but excellent for speech
        cmd.extend(["-c:a", "libopus", "-b:a", f"{bit_rate // 1000}k", "-f", "ogg"])
    else:
        return None
    cmd.append("pipe:1")
    return cmd


async def encode_audio(wav_data: bytes, format: str = DEFAULT_FORMAT, bit_rate: int = 128_000) -> bytes | None:
    """Encode WAV bytes to another format.

    Args:
        wav_data: Complete WAV file in memory
        format: Target format (wav, flac, opus)
        bit_rate: Target bit rate for lossy formats, in bits per second

    Returns:
        Encoded bytes, the input unchanged for wav, or None if conversion failed
    """
    if format == "wav":
        return wav_data

    cmd = _ffmpeg_command(format, bit_rate)
    if cmd is None:
        logger.error("Unsupported format: %s", format)
        return None

    # Check if ffmpeg is available
    if not shutil.which("ffmpeg"):
        logger.error("ffmpeg not found in PATH. Cannot encode audio.")
        return None

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(wav_data), timeout=ENCODE_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.error("ffmpeg timed out encoding to %s", format)
            return None
    except OSError as e:
        logger.error("Failed to run ffmpeg: %s", e)
        return None

    if proc.returncode != 0 or not stdout:
        logger.error("ffmpeg failed: %s", stderr.decode(errors="replace"))
        return None

    ratio = (1 - len(stdout) / len(wav_data)) * 100 if wav_data else 0.0
    logger.info(
        "Encoded recording to %s: %.1f KB -> %.1f KB (%.0f%% reduction)",
        format,
        len(wav_data) / 1024,
        len(stdout) / 1024,
        ratio,
    )
    return stdout
