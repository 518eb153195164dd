"""Capture controller: one recording session at a time.

States::

    IDLE -> RECORDING <-> PAUSED -> STOPPED -> COMMITTED -> IDLE
                                            -> DISCARDED -> IDLE

Calls that do not match this table raise ``InvalidTransition`` (or
``SessionAlreadyActive`` for a second ``start``) and leave the state as it
was. The media source is released on every path out of RECORDING/PAUSED.

Elapsed duration excludes paused intervals.
"""

import logging
import time
from collections.abc import Callable
from pathlib import Path

from PyQt6.QtCore import QObject, pyqtSignal

from muesli.audio.converter import encode_audio, mime_type_for
from muesli.audio.waveform import WaveformPreview, analyse_audio
from muesli.capture.session import (
    STANDARD,
    CapturedAudio,
    CaptureState,
    CommitResult,
    QualityProfile,
    RecordingSession,
    chunk_level,
    finalize_session,
)
from muesli.capture.source import MediaSource
from muesli.constants import FILE_EXTENSIONS, UPLOAD_FORMATS, get_now
from muesli.errors import (
    DeviceUnavailable,
    InvalidTransition,
    SessionAlreadyActive,
    UploadFailed,
    ValidationError,
)
from muesli.storage.gateway import Gateway

logger = logging.getLogger("muesli")


class CaptureController(QObject):
    """Drives a live recording from device acquisition to blob upload.

    Signals:
        state_changed: Emitted with the new CaptureState value on every transition.
        level_changed: Peak level (0.0-1.0) of each accepted chunk.
        preview_ready: Emitted with the WaveformPreview once a recording stops.
        device_error: Emitted with a message when the source fails mid-recording.
    """

    state_changed = pyqtSignal(str)
    level_changed = pyqtSignal(float)
    preview_ready = pyqtSignal(object)
    device_error = pyqtSignal(str)

    def __init__(
        self,
        source: MediaSource,
        gateway: Gateway,
        upload_format: str = "wav",
        clock: Callable[[], float] = time.monotonic,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        if upload_format not in UPLOAD_FORMATS:
            raise ValidationError(f"Unsupported upload format: {upload_format}")
        self._source = source
        self._gateway = gateway
        self._upload_format = upload_format
        self._clock = clock

        self._state = CaptureState.IDLE
        self._session: RecordingSession | None = None
        self._audio: CapturedAudio | None = None
        self._preview: WaveformPreview | None = None
        self._acquiring = False
        self._committing = False

    # -- State ---------------------------------------------------------------

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def audio(self) -> CapturedAudio | None:
        """The finalized recording while in STOPPED."""
        return self._audio

    @property
    def preview(self) -> WaveformPreview | None:
        return self._preview

    @property
    def elapsed_seconds(self) -> float:
        if self._session is not None:
            return self._session.elapsed(self._clock())
        if self._audio is not None:
            return self._audio.duration_seconds
        return 0.0

    def _set_state(self, state: CaptureState) -> None:
        if state is self._state:
            return
        logger.debug("Capture state %s -> %s", self._state.value, state.value)
        self._state = state
        self.state_changed.emit(state.value)

    def _require(self, operation: str, *states: CaptureState) -> None:
        if self._state not in states:
            raise InvalidTransition(f"Cannot {operation} while {self._state.value}")

    # -- Operations ----------------------------------------------------------

    async def start(self, profile: QualityProfile = STANDARD) -> None:
        """Acquire the input device and begin buffering chunks."""
        if self._state is not CaptureState.IDLE or self._acquiring:
            raise SessionAlreadyActive(f"A recording session is already {self._state.value}")

        self._acquiring = True
        try:
            await self._source.open(profile, self._on_chunk, self._on_source_error)
        except DeviceUnavailable:
            self._release_source()
            raise
        except Exception as e:
            self._release_source()
            raise DeviceUnavailable(f"Could not start recording: {e}") from e
        finally:
            self._acquiring = False

        self._audio = None
        self._preview = None
        self._session = RecordingSession(
            profile=profile,
            started_at=get_now(),
            start_time=self._clock(),
        )
        self._set_state(CaptureState.RECORDING)
        logger.info("Recording started (%s quality)", profile.name)

    async def pause(self) -> None:
        self._require("pause", CaptureState.RECORDING)
        session = self._session
        assert session is not None
        self._source.pause()
        # A device failure while pausing finalizes through the error callback
        if self._state is not CaptureState.RECORDING:
            return
        session.pause_started = self._clock()
        self._set_state(CaptureState.PAUSED)

    async def resume(self) -> None:
        self._require("resume", CaptureState.PAUSED)
        assert self._session is not None
        if self._session.pause_started is not None:
            self._session.paused_total += self._clock() - self._session.pause_started
            self._session.pause_started = None
        self._source.resume()
        if self._state is not CaptureState.PAUSED:
            return
        self._set_state(CaptureState.RECORDING)

    async def stop(self) -> CapturedAudio:
        """Finalize the buffered chunks and release the device."""
        self._require("stop", CaptureState.RECORDING, CaptureState.PAUSED)
        return self._finalize()

    async def commit(self) -> CommitResult:
        """Upload the finalized recording and hand its reference to the caller.

        On failure the recording stays in STOPPED so it can be retried or discarded.
        """
        self._require("commit", CaptureState.STOPPED)
        if self._committing:
            raise InvalidTransition("A commit is already in progress")
        audio = self._audio
        assert audio is not None

        self._committing = True
        try:
            data, filename, mime_type = await self._prepare_upload(audio)
            try:
                file_url = await self._gateway.upload_blob(data, filename, mime_type)
            except Exception as e:
                logger.error("Failed to upload %s: %s", filename, e)
                raise UploadFailed(f"Failed to upload {filename}: {e}") from e
        finally:
            self._committing = False

        self._audio = None
        self._preview = None
        self._set_state(CaptureState.COMMITTED)
        self._set_state(CaptureState.IDLE)

        logger.info("Committed recording %s", file_url)
        return CommitResult(
            file_url=file_url,
            caption=audio.caption,
            duration_seconds=audio.duration_seconds,
            audio=audio,
        )

    async def discard(self) -> None:
        """Drop the finalized recording without persisting it."""
        self._require("discard", CaptureState.STOPPED)
        if self._committing:
            raise InvalidTransition("Cannot discard while a commit is in progress")
        self._audio = None
        self._preview = None
        self._set_state(CaptureState.DISCARDED)
        self._set_state(CaptureState.IDLE)
        logger.info("Recording discarded")

    async def aclose(self) -> None:
        """Tear down: release the device and drop any uncommitted audio."""
        if self._state in (CaptureState.RECORDING, CaptureState.PAUSED):
            logger.warning("Closing controller mid-recording, captured audio dropped")
            self._release_source()
            self._session = None
        elif self._audio is not None:
            logger.warning("Closing controller with an uncommitted recording")
        self._audio = None
        self._preview = None
        self._set_state(CaptureState.IDLE)

    async def __aenter__(self) -> "CaptureController":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # -- Internals -----------------------------------------------------------

    def _on_chunk(self, chunk: bytes) -> None:
        # Paused or stopped sessions must not grow
        if self._state is not CaptureState.RECORDING or self._session is None:
            return
        self._session.chunks.append(chunk)
        self.level_changed.emit(chunk_level(chunk))

    def _on_source_error(self, message: str) -> None:
        logger.error("Audio Error: %s", message)
        self.device_error.emit(message)
        if self._state not in (CaptureState.RECORDING, CaptureState.PAUSED):
            return
        # Keep what was captured rather than dropping it
        try:
            self._finalize()
        except Exception:
            logger.error("Recording lost after device error")

    def _finalize(self) -> CapturedAudio:
        session = self._session
        assert session is not None
        try:
            audio = finalize_session(session, session.elapsed(self._clock()))
        except Exception:
            logger.exception("Failed to finalize recording")
            self._session = None
            self._set_state(CaptureState.IDLE)
            raise
        finally:
            self._release_source()

        self._session = None
        self._audio = audio
        self._preview = analyse_audio(audio.data)
        self._set_state(CaptureState.STOPPED)
        if self._preview is not None:
            self.preview_ready.emit(self._preview)
        logger.info(
            "Recording stopped: %.1fs, %.1f KB", audio.duration_seconds, len(audio.data) / 1024
        )
        return audio

    def _release_source(self) -> None:
        try:
            self._source.close()
        except Exception as e:
            logger.warning("Error releasing input device: %s", e)

    async def _prepare_upload(self, audio: CapturedAudio) -> tuple[bytes, str, str]:
        fmt = self._upload_format
        data = await encode_audio(audio.data, fmt, audio.profile.bit_rate)
        if data is None:
            logger.warning("Falling back to WAV upload")
            fmt = "wav"
            data = audio.data
        filename = str(Path(audio.filename).with_suffix(FILE_EXTENSIONS[fmt]))
        return data, filename, mime_type_for(fmt)
