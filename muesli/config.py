import contextlib
import json
import logging
import os
from pathlib import Path
from typing import Any

import keyring
import keyring.errors

from muesli.constants import GEMINI_MODEL_SYNTHESIS, GEMINI_MODEL_TRANSCRIPTION

logger = logging.getLogger("muesli")

CONFIG_DIR = Path(os.path.expanduser("~/.config/muesli"))
CONFIG_FILE = CONFIG_DIR / "config.json"
SERVICE_NAME = "muesli"
API_KEY_USER = "gemini_api_key"

DEFAULT_CONFIG = {
    "data_dir": os.path.expanduser("~/.local/share/muesli"),
    "quality": "standard",
    "upload_format": "wav",
    "mic_device_id": None,
    "synthesis_model": GEMINI_MODEL_SYNTHESIS,
    "transcription_model": GEMINI_MODEL_TRANSCRIPTION,
}


class Config:
    def __init__(self, config_file: Path | None = None) -> None:
        self._file = config_file or CONFIG_FILE
        self._data = DEFAULT_CONFIG.copy()
        self.load()

    def load(self) -> None:
        if self._file.exists():
            try:
                with open(self._file) as f:
                    saved = json.load(f)
                    # Filter out api_key if it was accidentally saved in json before
                    if "api_key" in saved:
                        del saved["api_key"]
                    self._data.update(saved)
            except Exception as e:
                logger.warning("Failed to load config: %s", e)

    def save(self) -> None:
        self._file.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self._file, "w") as f:
                # Ensure we never save api_key to json
                data_to_save = {k: v for k, v in self._data.items() if k != "api_key"}
                json.dump(data_to_save, f, indent=4)
        except Exception as e:
            logger.warning("Failed to save config: %s", e)

    def get(self, key: str, default: Any | None = None) -> Any:
        # API key is stored in keyring for security, env var as fallback
        if key == "api_key":
            try:
                stored = keyring.get_password(SERVICE_NAME, API_KEY_USER)
            except Exception as e:
                logger.warning("Keyring error: %s", e)
                stored = None
            return stored or os.environ.get("GEMINI_API_KEY") or default
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        if key == "api_key":
            try:
                if value:
                    keyring.set_password(SERVICE_NAME, API_KEY_USER, value)
                else:
                    with contextlib.suppress(keyring.errors.PasswordDeleteError):
                        keyring.delete_password(SERVICE_NAME, API_KEY_USER)
            except Exception as e:
                logger.warning("Failed to save to keyring: %s", e)
        else:
            self._data[key] = value
            self.save()

    @property
    def data_dir(self) -> Path:
        return Path(os.path.expanduser(self._data["data_dir"]))

    @property
    def db_path(self) -> Path:
        return self.data_dir / "muesli.db"

    @property
    def blob_dir(self) -> Path:
        return self.data_dir / "recordings"


# Global instance
config = Config()
