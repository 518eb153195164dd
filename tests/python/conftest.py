import struct

import pytest

from muesli.capture import CaptureController, MediaSource
from muesli.errors import DeviceUnavailable, GatewayError, ServiceError
from muesli.storage import SQLiteGateway
from muesli.synthesis import SynthesisService, Transcriber
from muesli.sync import EntityStore


def pcm_chunk(*samples: int) -> bytes:
    """Little-endian 16-bit PCM bytes."""
    return struct.pack(f"<{len(samples)}h", *samples)


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeSource(MediaSource):
    """Media source driven by the test instead of a microphone."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.profile = None
        self.on_chunk = None
        self.on_error = None
        self.opened = 0
        self.closed = 0
        self.paused = 0
        self.resumed = 0
        self.pause_error: str | None = None
        self.resume_error: str | None = None
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self, profile, on_chunk, on_error) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        if self._open:
            raise DeviceUnavailable("busy")
        self.profile = profile
        self.on_chunk = on_chunk
        self.on_error = on_error
        self.opened += 1
        self._open = True

    def pause(self) -> None:
        self.paused += 1
        if self.pause_error is not None:
            self.on_error(self.pause_error)

    def resume(self) -> None:
        self.resumed += 1
        if self.resume_error is not None:
            self.on_error(self.resume_error)

    def close(self) -> None:
        if self._open:
            self.closed += 1
        self._open = False

    def emit(self, chunk: bytes) -> None:
        assert self.on_chunk is not None
        self.on_chunk(chunk)

    def fail(self, message: str) -> None:
        assert self.on_error is not None
        self.on_error(message)


class FakeSynthesizer(SynthesisService):
    def __init__(self, result: str = "## Synthesis\n- merged", error: Exception | None = None):
        self.result = result
        self.error = error
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.result


class FakeTranscriber(Transcriber):
    def __init__(self, text: str = "hello from the memo"):
        self.text = text
        self.calls: list[tuple[bytes, str]] = []

    async def transcribe(self, data: bytes, mime_type: str) -> str:
        self.calls.append((data, mime_type))
        return self.text


class FlakyGateway(SQLiteGateway):
    """SQLite gateway whose next call of a given operation can be made to fail."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.failures: dict[str, Exception] = {}
        self.uploads: list[str] = []

    def fail_next(self, operation: str, error: Exception | None = None) -> None:
        self.failures[operation] = error or GatewayError(f"{operation} unavailable")

    def _maybe_fail(self, operation: str) -> None:
        error = self.failures.pop(operation, None)
        if error is not None:
            raise error

    async def insert(self, kind, fields):
        self._maybe_fail("insert")
        return await super().insert(kind, fields)

    async def update(self, kind, record_id, fields, expected_version=None):
        self._maybe_fail("update")
        return await super().update(kind, record_id, fields, expected_version)

    async def delete(self, kind, record_id):
        self._maybe_fail("delete")
        return await super().delete(kind, record_id)

    async def upload_blob(self, data, filename, content_type):
        self._maybe_fail("upload_blob")
        url = await super().upload_blob(data, filename, content_type)
        self.uploads.append(url)
        return url


@pytest.fixture
def gateway(tmp_path):
    gw = FlakyGateway(tmp_path / "muesli.db", tmp_path / "blobs")
    yield gw
    gw.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def controller(source, gateway, clock):
    return CaptureController(source, gateway, clock=clock)


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def store(gateway, synthesizer, transcriber):
    s = EntityStore(gateway, synthesizer, transcriber)
    yield s
    s.close()


@pytest.fixture
def failing_synthesizer():
    return FakeSynthesizer(error=ServiceError("model overloaded"))


def record_signals(store: EntityStore) -> list[tuple]:
    """Collect every change signal a store emits, in order."""
    log: list[tuple] = []
    store.folders_changed.connect(lambda: log.append(("folders",)))
    store.notes_changed.connect(lambda fid: log.append(("notes", fid)))
    store.synthesis_changed.connect(lambda fid: log.append(("synthesis", fid)))
    store.busy_changed.connect(lambda fid, busy: log.append(("busy", fid, busy)))
    store.current_folder_changed.connect(lambda f: log.append(("current", f)))
    return log


@pytest.fixture
def events_log(store):
    return record_signals(store)


@pytest.fixture
def events_log_for():
    return record_signals
