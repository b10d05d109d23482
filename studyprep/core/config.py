from __future__ import annotations

import json
import os
from typing import Any, List, Optional, cast

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

KNOWN_DOWNLOAD_STRATEGIES: tuple[str, ...] = ("hardened", "plain", "alternate")


def _parse_csv_str(v: str) -> List[str]:
    """Parse a comma-separated string into a list of values, stripping whitespace."""
    return [x.strip() for x in v.split(",") if x.strip()]


# ---------------------------------------------------------------------------
# Environment *pre-processing* – normalise list variables before Pydantic
# ---------------------------------------------------------------------------

# ``DOWNLOAD_STRATEGIES`` is most conveniently written as ``hardened,plain`` in
# *.env* files, which Pydantic's strict JSON parser would otherwise reject.

_env_strategies = os.environ.get("DOWNLOAD_STRATEGIES")
if _env_strategies and not _env_strategies.strip().startswith("["):
    os.environ["DOWNLOAD_STRATEGIES"] = json.dumps(_parse_csv_str(_env_strategies))


class Settings(BaseSettings):
    """
    Application configuration settings, loaded from environment variables.
    """

    debug: bool = False
    pipeline_version: str = "v0.1.0"
    commit_sha: Optional[str] = None
    prometheus_enabled: bool = True

    # Session store
    redis_url: str = "redis://localhost:6379/0"
    session_key_prefix: str = "session:"

    # Download manager
    download_strategies: List[str] = Field(
        default_factory=lambda: list(KNOWN_DOWNLOAD_STRATEGIES)
    )
    download_timeout_seconds: float = Field(default=90.0, gt=0)
    download_retry_delay_seconds: float = Field(default=2.0, ge=0)
    max_download_size_mb: int = Field(default=100, gt=0)
    download_user_agent: str = "StudyPrep-Ingest/1.0"

    # OCR
    ocr_language: str = "eng"
    ocr_page_segmentation_mode: int = 3
    ocr_acceptance_confidence: float = Field(default=70.0, ge=0, le=100)
    ocr_image_attempts: int = Field(default=3, ge=1)
    ocr_fallback_attempts: int = Field(default=2, ge=1)
    ocr_retry_delay_seconds: float = Field(default=1.0, ge=0)
    ocr_timeout_seconds: float = Field(default=60.0, gt=0)
    ocr_init_timeout_seconds: float = Field(default=30.0, gt=0)
    ocr_pool_size: int = Field(default=1, ge=1)
    ocr_pdf_dpi: int = Field(default=200, gt=0)

    # Chunking
    chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)

    # Content generation
    openai_api_key: str = ""
    llm_model: str = "gpt-4o"
    llm_temperature: float = 0.7
    llm_timeout_seconds: float = Field(default=120.0, gt=0)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter=None,
        # Disable automatic JSON parsing globally – custom validators will handle coercion.
        enable_decoding=False,
        protected_namespaces=("protect_", "private_"),
    )

    @model_validator(mode="after")
    def validate_chunking(self) -> "Settings":
        """Overlap must leave every chunk room to advance past the previous one."""
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("CHUNK_OVERLAP must be smaller than CHUNK_SIZE")
        return self

    @field_validator("download_strategies", mode="before")
    @classmethod
    def _coerce_download_strategies(cls, v: Any) -> List[str]:
        """Allow comma-separated string in addition to a proper JSON array."""

        if v is None:
            return list(KNOWN_DOWNLOAD_STRATEGIES)

        if isinstance(v, str):
            stripped_v = v.strip()
            if stripped_v.startswith("[") and stripped_v.endswith("]"):
                try:
                    loaded_json = json.loads(stripped_v)
                    if isinstance(loaded_json, list):
                        return [str(x).strip().lower() for x in loaded_json if str(x).strip()]
                except json.JSONDecodeError:
                    pass  # Fall through to _parse_csv_str for malformed JSON strings
            return [x.lower() for x in _parse_csv_str(v)]

        if isinstance(v, (list, tuple)):
            return [str(x).strip().lower() for x in v if str(x).strip()]

        return cast(List[str], v)

    @field_validator("download_strategies")
    @classmethod
    def _validate_download_strategies(cls, v: List[str]) -> List[str]:
        """Reject unknown transport names and empty strategy lists."""
        if not v:
            raise ValueError("DOWNLOAD_STRATEGIES must name at least one strategy")
        unknown = [name for name in v if name not in KNOWN_DOWNLOAD_STRATEGIES]
        if unknown:
            raise ValueError(
                f"Unknown download strategies: {', '.join(unknown)} "
                f"(expected any of {', '.join(KNOWN_DOWNLOAD_STRATEGIES)})"
            )
        return v

    @property
    def max_download_size_bytes(self) -> int:
        return self.max_download_size_mb * 1024 * 1024


# Public accessor – manual caching to support special behaviour in tests
_CACHED_SETTINGS: Optional[Settings] = None


def get_settings() -> Settings:  # noqa: D401 – accessor helper
    """Return a **singleton** Settings instance unless running under pytest.

    Under pytest (``PYTEST_CURRENT_TEST`` present) a **fresh** instance is
    built on every call so environment tweaks made through ``monkeypatch``
    are always honoured.
    """

    global _CACHED_SETTINGS  # noqa: PLW0603 – module-level singleton

    if "PYTEST_CURRENT_TEST" in os.environ:
        return Settings()

    if _CACHED_SETTINGS is None:
        _CACHED_SETTINGS = Settings()

    return _CACHED_SETTINGS


# Mimic ``functools.lru_cache`` API expected by existing tests
def _clear_settings_cache() -> None:  # noqa: D401 – helper for tests
    """Clear the internal Settings singleton (used by unit-tests)."""

    global _CACHED_SETTINGS
    _CACHED_SETTINGS = None


get_settings.cache_clear = _clear_settings_cache  # type: ignore[attr-defined]
