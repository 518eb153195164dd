"""Exception taxonomy for Muesli.

Every failure the core reports is one of these, so callers can offer retry or
cancel affordances without inspecting stack traces.
"""


class MuesliError(Exception):
    """Base exception for Muesli."""


class ConfigError(MuesliError):
    """Raised when configuration is missing or invalid."""


class ValidationError(MuesliError):
    """Caller-supplied input violates an entity invariant. Never retried."""


class NotFound(MuesliError):
    """The referenced record id is absent from the persistence gateway."""


class VersionConflict(MuesliError):
    """A note changed remotely since the cached version was read."""


class GatewayError(MuesliError):
    """The persistence gateway failed for a reason other than validation or lookup."""


class DeviceUnavailable(MuesliError):
    """The audio input could not be acquired (permission, busy, no hardware)."""


class SessionAlreadyActive(MuesliError):
    """start() was called while a recording session already exists."""


class InvalidTransition(MuesliError):
    """The capture operation is not valid from the controller's current state."""


class UploadFailed(MuesliError):
    """The finalized recording could not be written to the blob store."""


class ServiceError(MuesliError):
    """The generative service returned an error or an unusable response."""


class SynthesisFailed(MuesliError):
    """Folder synthesis failed; nothing was cached or persisted."""


class NothingToSynthesize(ValidationError, SynthesisFailed):
    """The folder has no cached notes to synthesize."""


class RecordingNotSaved(MuesliError):
    """A recording was uploaded but its note could not be stored.

    ``result`` is the CommitResult, so the note can be added again.
    """

    def __init__(self, message: str, result) -> None:
        super().__init__(message)
        self.result = result
