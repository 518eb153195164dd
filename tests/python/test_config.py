import json

import pytest

from muesli import config as config_module
from muesli.config import Config


@pytest.fixture
def no_keyring(monkeypatch):
    stored = {}

    def get_password(service, user):
        return stored.get((service, user))

    def set_password(service, user, value):
        stored[(service, user)] = value

    monkeypatch.setattr(config_module.keyring, "get_password", get_password)
    monkeypatch.setattr(config_module.keyring, "set_password", set_password)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    return stored


def test_defaults_without_file(tmp_path, no_keyring):
    cfg = Config(tmp_path / "config.json")

    assert cfg.get("quality") == "standard"
    assert cfg.get("upload_format") == "wav"
    assert cfg.get("api_key") is None


def test_saved_values_override_defaults(tmp_path, no_keyring):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"quality": "high", "data_dir": str(tmp_path / "data")}))

    cfg = Config(path)

    assert cfg.get("quality") == "high"
    assert cfg.db_path == tmp_path / "data" / "muesli.db"
    assert cfg.blob_dir == tmp_path / "data" / "recordings"


def test_api_key_goes_to_keyring_not_json(tmp_path, no_keyring):
    path = tmp_path / "config.json"
    cfg = Config(path)

    cfg.set("api_key", "secret")
    cfg.set("upload_format", "flac")

    assert cfg.get("api_key") == "secret"
    assert no_keyring[(config_module.SERVICE_NAME, config_module.API_KEY_USER)] == "secret"
    saved = json.loads(path.read_text())
    assert saved["upload_format"] == "flac"
    assert "api_key" not in saved


def test_api_key_falls_back_to_environment(tmp_path, no_keyring, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "from-env")
    assert Config(tmp_path / "config.json").get("api_key") == "from-env"


def test_broken_keyring_is_not_fatal(tmp_path, monkeypatch):
    def broken(service, user):
        raise RuntimeError("no backend")

    monkeypatch.setattr(config_module.keyring, "get_password", broken)
    monkeypatch.setenv("GEMINI_API_KEY", "from-env")

    assert Config(tmp_path / "config.json").get("api_key") == "from-env"


def test_corrupt_file_keeps_defaults(tmp_path, no_keyring):
    path = tmp_path / "config.json"
    path.write_text("{not json")

    assert Config(path).get("quality") == "standard"
