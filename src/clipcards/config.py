"""Run settings: pydantic schema, JSON loader and environment overrides."""
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from clipcards.errors import ConfigError

DEFAULT_WHISPER_MODELS_DIR = Path.home() / "models" / "whisper"


class Settings(BaseModel):
    """Everything a run needs to know besides its input."""

    provider: Literal["hosted", "local"] = "hosted"
    hosted_model: str = "gpt-4o-mini"
    hosted_base_url: str = "https://api.openai.com/v1"
    api_key: Optional[str] = None
    local_model: str = "llama3.2"
    ollama_url: str = "http://localhost:11434"

    transcription: Literal["remote", "local"] = "remote"
    whisper_model_size: str = "base"

    audio_padding_ms: int = Field(default=500, ge=0, le=10_000)
    target_language: str = "en"
    native_language: str = "ko"
    max_cards: int = Field(default=30, ge=1, le=500)

    preserve_workspace: bool = False
    cleanup_delay_s: float = Field(default=5.0, ge=0.0)

    @field_validator("target_language", "native_language", mode="before")
    @classmethod
    def normalize_language(cls, v: str) -> str:
        normalized = str(v).strip().lower()
        if not normalized:
            raise ValueError("language code must not be empty")
        return normalized

    @field_validator("hosted_base_url", "ollama_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def audio_padding_s(self) -> float:
        return self.audio_padding_ms / 1000.0

    def resolved_api_key(self) -> str | None:
        """API key from settings, else from the OPENAI_API_KEY environment variable."""
        return self.api_key or os.environ.get("OPENAI_API_KEY") or None


def get_whisper_models_dir() -> Path:
    """Return the directory holding whisper.cpp ``ggml-<size>.bin`` models.

    Respects the CLIPCARDS_WHISPER_MODELS_DIR environment variable.
    Falls back to ~/models/whisper when the variable is not set.
    """
    env_val = os.environ.get("CLIPCARDS_WHISPER_MODELS_DIR")
    if env_val is not None:
        return Path(env_val).expanduser().resolve()
    return DEFAULT_WHISPER_MODELS_DIR


def load_settings(path: Path | None = None, **overrides) -> Settings:
    """Load settings from a JSON file, then apply non-None *overrides*.

    Raises ConfigError if the file is unreadable or fails validation.
    """
    data: dict = {}
    if path is not None:
        try:
            data = Settings.model_validate_json(path.read_text(encoding="utf-8")).model_dump(
                exclude_unset=True
            )
        except ValidationError as e:
            raise ConfigError(path, _format_validation_error(e)) from e
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigError(path, str(e)) from e

    data.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(path or Path("<command line>"), _format_validation_error(e)) from e


def _format_validation_error(e: ValidationError) -> str:
    return "; ".join(
        f"{' -> '.join(str(x) for x in err['loc'])}: {err['msg']}"
        for err in e.errors()
    )
