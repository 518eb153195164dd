"""Abstract interfaces for the generative services."""

from abc import ABC, abstractmethod


class SynthesisService(ABC):
    """Stateless text generation, one request per call."""

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        """Return generated markdown for the prompt.

        Raises:
            ServiceError: the service failed or returned nothing usable.
        """


class Transcriber(ABC):
    """Speech-to-text for committed recordings."""

    @abstractmethod
    async def transcribe(self, data: bytes, mime_type: str) -> str:
        """Return the transcript of an audio payload."""
