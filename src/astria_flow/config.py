"""Runtime settings for talking to the Astria API."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from astria_flow.errors import ClassifiedError, ErrorKind

DEFAULT_ASTRIA_KEY_FILE = Path(".api_keys/Astria.md")
DEFAULT_BASE_URL = "https://api.astria.ai"
FLUX_BASE_TUNE_ID = 1504944

LORA_MODEL_TYPE = "lora"
MIN_TUNE_IMAGES = 4
MAX_TUNE_IMAGES = 20


@dataclass(frozen=True)
class AstriaSettings:
    """Connection and polling configuration, built once and passed around."""

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: float = 30.0
    max_polling_attempts: int = 30
    polling_delay_seconds: float = 2.0
    # Error hints reported during the first polls are unreliable.
    error_grace_attempts: int = 11
    models: dict[str, int] = field(default_factory=lambda: {"flux": FLUX_BASE_TUNE_ID})
    default_model: str = "flux"
    lora_model: str = "flux"

    @staticmethod
    def lookup_api_key(key_file: Path = DEFAULT_ASTRIA_KEY_FILE) -> str | None:
        """Return the first non-empty key from ``ASTRIA_API_KEY`` or ``key_file``."""
        from_env = (os.getenv("ASTRIA_API_KEY") or "").strip()
        if from_env or not key_file.is_file():
            return from_env or None
        return key_file.read_text(encoding="utf-8").strip() or None

    @classmethod
    def from_env(cls, key_file: Path = DEFAULT_ASTRIA_KEY_FILE, **overrides) -> AstriaSettings:
        """Build settings with the key found by :meth:`lookup_api_key`.

        Raises:
            RuntimeError: If no API key can be found.
        """
        api_key = cls.lookup_api_key(key_file)
        if not api_key:
            raise RuntimeError("Missing ASTRIA_API_KEY (set env var or .api_keys/Astria.md)")
        base_url = (os.getenv("ASTRIA_BASE_URL") or "").strip()
        if base_url and "base_url" not in overrides:
            overrides["base_url"] = base_url
        return cls(api_key=api_key, **overrides)

    @property
    def available_models(self) -> list[str]:
        return sorted(self.models)

    def model_id(self, model_name: str) -> int:
        """Map a model name to the base tune id prompts are submitted under."""
        try:
            return self.models[model_name]
        except KeyError:
            raise ClassifiedError(
                f"Invalid model name: {model_name}",
                ErrorKind.VALIDATION,
                details={"available_models": self.available_models},
            ) from None
