"""
Centralized settings for docpredict.

Manifesto:
    One validated, cached settings object replaces ad-hoc environment
    parsing in the orchestrator, the Watson ML adapter and the CLI.
    Deployment-wide knobs (confidence threshold, page size, retry budget,
    page failure policy) live here so they are fixed per deployment rather
    than passed per call.

All fields can be set via ``DOCPREDICT_*`` environment variables (e.g.
``DOCPREDICT_CONFIDENCE_THRESHOLD=0.75``) or through a ``.env`` file.

Tags:
    configuration, settings, pydantic, caching, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIDENCE_THRESHOLD = 0.8
DEFAULT_PAGE_SIZE = 30000


class PageFailurePolicy(str, Enum):
    """What the orchestrator does when a page exhausts its retry budget."""

    SKIP = "skip"
    FAIL = "fail"


class RetryBackoff(str, Enum):
    """How the wait between page attempts grows."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    CONSTANT = "constant"


class RepositoryBackend(str, Enum):
    MEMORY = "memory"
    SQL = "sql"


class PredictorBackend(str, Enum):
    AUTO = "auto"
    WATSONX = "watsonx"
    ECHO = "echo"


class DocPredictSettings(BaseSettings):
    """docpredict configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DOCPREDICT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Summary ──────────────────────────────────────────────────
    confidence_threshold: float = Field(default=DEFAULT_CONFIDENCE_THRESHOLD)

    # ── Orchestration ────────────────────────────────────────────
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, description="Rows per prediction call")
    row_batch_size: int = Field(default=DEFAULT_PAGE_SIZE, description="Rows per ingestion insert")
    max_attempts: int = Field(default=3, description="Attempts per page, first call included")
    retry_delay_seconds: float = Field(default=1.0)
    retry_backoff: RetryBackoff = Field(default=RetryBackoff.EXPONENTIAL)
    page_failure_policy: PageFailurePolicy = Field(default=PageFailurePolicy.SKIP)
    prediction_models: list[str] = Field(
        default_factory=list,
        description="Models to run for every new document; empty means the registry default",
    )

    # ── Events ───────────────────────────────────────────────────
    auto_create_topics: bool = Field(default=True)

    # ── Storage ──────────────────────────────────────────────────
    repository_backend: RepositoryBackend = Field(default=RepositoryBackend.MEMORY)
    database_url: str = Field(default="sqlite:///data/docpredict.db")
    database_echo: bool = Field(default=False)
    originals_dir: Path = Field(default=Path("data/originals"), description="Copies of ingested files")

    # ── Models / predictor ───────────────────────────────────────
    models_file: Path | None = Field(default=None, description="JSON file of model descriptors")
    predictor_backend: PredictorBackend = Field(default=PredictorBackend.AUTO)
    echo_confidence: float = Field(default=1.0)
    wml_api_key: str = Field(default="")
    wml_endpoint: str = Field(default="")
    wml_identity_url: str = Field(default="https://iam.cloud.ibm.com/identity/token")
    wml_version: str = Field(default="2021-05-01")
    request_timeout_seconds: float = Field(default=300.0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="auto", description="json, console or auto")

    @field_validator("confidence_threshold", "echo_confidence")
    @classmethod
    def _check_probability(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("must be between 0 and 1")
        return value

    @field_validator("page_size", "row_batch_size", "max_attempts")
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("retry_delay_seconds", "request_timeout_seconds")
    @classmethod
    def _check_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    # ── Derived properties ───────────────────────────────────────

    @property
    def watsonx_configured(self) -> bool:
        return bool(self.wml_api_key and self.wml_endpoint and self.wml_identity_url)

    @property
    def json_logs(self) -> bool | None:
        if self.log_format == "json":
            return True
        if self.log_format == "console":
            return False
        return None


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, DocPredictSettings] = {}


def get_settings(*, _force_reload: bool = False) -> DocPredictSettings:
    """Load, validate, and cache a :class:`DocPredictSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]

    settings = DocPredictSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Drop the cached settings (tests, CLI option overrides)."""
    _settings_cache.clear()


__all__ = [
    "DEFAULT_CONFIDENCE_THRESHOLD",
    "DEFAULT_PAGE_SIZE",
    "DocPredictSettings",
    "PageFailurePolicy",
    "PredictorBackend",
    "RepositoryBackend",
    "RetryBackoff",
    "clear_settings_cache",
    "get_settings",
]
