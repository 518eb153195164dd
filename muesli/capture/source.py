"""Live audio input sources.

A source emits raw 16-bit PCM chunk events to the callback it was opened with,
always on the event loop thread. It is exclusively owned by one recording
session at a time.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from muesli.capture.session import QualityProfile
from muesli.constants import AUDIO_CHUNK_SIZE
from muesli.errors import DeviceUnavailable

logger = logging.getLogger("muesli")

ChunkCallback = Callable[[bytes], None]
ErrorCallback = Callable[[str], None]


class MediaSource(ABC):
    """Byte-producing audio input device."""

    @abstractmethod
    async def open(
        self,
        profile: QualityProfile,
        on_chunk: ChunkCallback,
        on_error: ErrorCallback,
    ) -> None:
        """Acquire the device and start emitting chunks.

        Raises:
            DeviceUnavailable: permission denied, device busy or no hardware.
        """

    @abstractmethod
    def pause(self) -> None:
        """Stop emitting chunks without releasing the device.

        Device failures are reported through ``on_error``, not raised.
        """

    @abstractmethod
    def resume(self) -> None:
        """Resume emitting chunks. Failures go to ``on_error``."""

    @abstractmethod
    def close(self) -> None:
        """Release the device. Safe to call more than once."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the device is currently held."""


@dataclass
class InputDevice:
    id: int
    name: str
    channels: int
    sample_rate: float
    is_default: bool = False


def _sounddevice() -> Any:
    """Import sounddevice, which needs the PortAudio shared library at import time."""
    try:
        import sounddevice
    except OSError as e:
        raise DeviceUnavailable(f"PortAudio is not available: {e}") from e
    return sounddevice


def list_input_devices() -> list[InputDevice]:
    """List the microphones PortAudio can see."""
    sd = _sounddevice()
    try:
        devices = sd.query_devices()
        default_input = sd.default.device[0]
    except sd.PortAudioError as e:
        logger.warning("Failed to list devices: %s", e)
        return []
    return [
        InputDevice(
            id=index,
            name=device["name"],
            channels=device["max_input_channels"],
            sample_rate=device["default_samplerate"],
            is_default=index == default_input,
        )
        for index, device in enumerate(devices)
        if device["max_input_channels"] > 0
    ]


class SoundDeviceSource(MediaSource):
    """Microphone input through PortAudio (the ``sounddevice`` library).

    PortAudio calls back on its own thread; chunks are handed to the event
    loop with ``call_soon_threadsafe`` so consumers only ever run on the loop.
    """

    def __init__(self, device_id: int | str | None = None) -> None:
        self.device_id = device_id
        self._stream: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._on_chunk: ChunkCallback | None = None
        self._on_error: ErrorCallback | None = None

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    async def open(
        self,
        profile: QualityProfile,
        on_chunk: ChunkCallback,
        on_error: ErrorCallback,
    ) -> None:
        if self._stream is not None:
            raise DeviceUnavailable("Audio input is already in use")

        sd = _sounddevice()
        self._loop = asyncio.get_running_loop()
        self._on_chunk = on_chunk
        self._on_error = on_error
        try:
            # Opening may block on a permission prompt or a busy device
            self._stream = await asyncio.to_thread(self._open_stream, profile)
        except (sd.PortAudioError, ValueError) as e:
            self._reset()
            raise DeviceUnavailable(f"Could not open microphone: {e}") from e
        logger.info(
            "Opened input device %s (%d Hz, %d ch)",
            self.device_id if self.device_id is not None else "default",
            profile.sample_rate,
            profile.channels,
        )

    def _open_stream(self, profile: QualityProfile) -> Any:
        sd = _sounddevice()
        stream = sd.RawInputStream(
            samplerate=profile.sample_rate,
            channels=profile.channels,
            dtype="int16",
            blocksize=AUDIO_CHUNK_SIZE,
            device=self.device_id,
            callback=self._callback,
        )
        try:
            stream.start()
        except sd.PortAudioError:
            stream.close()
            raise
        return stream

    def _callback(self, indata, frames, time_info, status) -> None:
        # Runs on the PortAudio thread
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        if status.input_overflow:
            logger.debug("Input overflow, %d frames", frames)
        if self._on_chunk is not None:
            loop.call_soon_threadsafe(self._on_chunk, bytes(indata))

    def pause(self) -> None:
        if self._stream is None:
            return
        sd = _sounddevice()
        try:
            self._stream.stop()
        except sd.PortAudioError as e:
            logger.error("Failed to pause input: %s", e)
            if self._on_error is not None:
                self._on_error(str(e))

    def resume(self) -> None:
        if self._stream is None:
            return
        sd = _sounddevice()
        try:
            self._stream.start()
        except sd.PortAudioError as e:
            logger.error("Failed to resume input: %s", e)
            if self._on_error is not None:
                self._on_error(str(e))

    def close(self) -> None:
        stream = self._stream
        self._reset()
        if stream is None:
            return
        sd = _sounddevice()
        try:
            stream.close()
        except sd.PortAudioError as e:
            logger.warning("Error closing input stream: %s", e)
        logger.info("Released input device")

    def _reset(self) -> None:
        self._stream = None
        self._on_chunk = None
        self._on_error = None
