import logging

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from muesli.config import config
from muesli.errors import ConfigError, ServiceError
from muesli.synthesis.base import SynthesisService, Transcriber

logger = logging.getLogger("muesli")


class SynthesisResponse(BaseModel):
    """Structured response for a folder synthesis."""

    synthesis: str


class TranscriptionResponse(BaseModel):
    text: str


DEFAULT_TRANSCRIPTION_PROMPT = """
You are a transcription assistant. Transcribe this voice memo verbatim.

Instructions:
1. Keep the speaker's wording; remove only filler sounds (um, uh)
2. Split long monologues into paragraphs
3. If the memo is silent or unintelligible, return an empty string
"""


def _make_client(api_key: str | None) -> genai.Client:
    api_key = api_key or config.get("api_key")
    if not api_key:
        raise ConfigError("GEMINI_API_KEY not found. Set it in settings or environment variables.")
    return genai.Client(api_key=api_key)


class GeminiSynthesizer(SynthesisService):
    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        self.client = _make_client(api_key)
        self.model = model or config.get("synthesis_model")

    async def generate(self, prompt: str) -> str:
        logger.info("Generating synthesis with %s...", self.model)
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=[types.Content(parts=[types.Part.from_text(text=prompt)])],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=SynthesisResponse,
                ),
            )
        except genai_errors.APIError as e:
            raise ServiceError(f"Gemini API error: {e}") from e

        if not response.text:
            raise ServiceError("Gemini returned an empty response")
        try:
            result = SynthesisResponse.model_validate_json(response.text)
        except SchemaError as e:
            raise ServiceError(f"Unexpected synthesis response: {e}") from e

        if not result.synthesis.strip():
            raise ServiceError("Failed to generate a synthesis")
        return result.synthesis


class GeminiTranscriber(Transcriber):
    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        self.client = _make_client(api_key)
        self.model = model or config.get("transcription_model")

    async def transcribe(self, data: bytes, mime_type: str, prompt: str | None = None) -> str:
        logger.info("Transcribing %.1f KB of %s...", len(data) / 1024, mime_type)
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=[
                    types.Content(
                        parts=[
                            types.Part.from_text(text=prompt or DEFAULT_TRANSCRIPTION_PROMPT),
                            types.Part.from_bytes(data=data, mime_type=mime_type),
                        ]
                    )
                ],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=TranscriptionResponse,
                    max_output_tokens=65536,  # Allow long memos (default 8192 is too small)
                ),
            )
        except genai_errors.APIError as e:
            raise ServiceError(f"Gemini API error: {e}") from e

        try:
            return TranscriptionResponse.model_validate_json(response.text or "").text
        except SchemaError as e:
            raise ServiceError(f"Unexpected transcription response: {e}") from e
