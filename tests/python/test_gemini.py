from types import SimpleNamespace

import pytest
from google.genai import errors as genai_errors

from muesli.errors import ConfigError, ServiceError
from muesli.synthesis import gemini


class FakeModels:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.calls = []

    async def generate_content(self, model, contents, config):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text)


@pytest.fixture
def fake_models(monkeypatch):
    models = FakeModels()

    class FakeClient:
        def __init__(self, api_key):
            self.api_key = api_key
            self.aio = SimpleNamespace(models=models)

    monkeypatch.setattr(gemini.genai, "Client", FakeClient)
    return models


@pytest.mark.asyncio
async def test_synthesizer_returns_structured_text(fake_models):
    fake_models.text = '{"synthesis": "## Ideas\\n- one"}'
    synthesizer = gemini.GeminiSynthesizer(api_key="key", model="gemini-test")

    result = await synthesizer.generate("notes go here")

    assert result == "## Ideas\n- one"
    call = fake_models.calls[0]
    assert call["model"] == "gemini-test"
    assert call["contents"][0].parts[0].text == "notes go here"


@pytest.mark.asyncio
@pytest.mark.parametrize("text", [None, "", "not json", '{"synthesis": "  "}'])
async def test_synthesizer_rejects_unusable_responses(fake_models, text):
    fake_models.text = text
    synthesizer = gemini.GeminiSynthesizer(api_key="key")

    with pytest.raises(ServiceError):
        await synthesizer.generate("prompt")


@pytest.mark.asyncio
async def test_api_errors_become_service_errors(fake_models):
    fake_models.error = genai_errors.APIError(
        503, {"error": {"code": 503, "message": "overloaded", "status": "UNAVAILABLE"}}
    )
    synthesizer = gemini.GeminiSynthesizer(api_key="key")

    with pytest.raises(ServiceError, match="Gemini API error"):
        await synthesizer.generate("prompt")


@pytest.mark.asyncio
async def test_transcriber_sends_audio(fake_models):
    fake_models.text = '{"text": "hello world"}'
    transcriber = gemini.GeminiTranscriber(api_key="key")

    result = await transcriber.transcribe(b"RIFF....", "audio/wav")

    assert result == "hello world"
    parts = fake_models.calls[0]["contents"][0].parts
    assert parts[1].inline_data.mime_type == "audio/wav"
    assert parts[1].inline_data.data == b"RIFF...."


def test_missing_api_key_is_a_config_error(fake_models, monkeypatch):
    monkeypatch.setattr(gemini.config, "get", lambda key, default=None: None)

    with pytest.raises(ConfigError):
        gemini.GeminiSynthesizer()
