"""Worker configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Final

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

# Load environment variables from .env file
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DEFAULT_JOB_FILE_PATH: Final[str] = ".mergewise-runtime/jobs.ndjson"


class SettingsError(RuntimeError):
    """Raised when worker configuration is invalid or incomplete."""


class DeliveryMode(str, Enum):
    DISABLED = "disabled"
    COMMENTS = "comments"


@dataclass(frozen=True)
class GitHubAppCredentials:
    app_id: int
    private_key_pem: str


class WorkerSettings(BaseModel):
    """Runtime settings loaded from environment variables."""

    poll_interval_ms: int = Field(default=3000, ge=250)
    max_processed_keys: int = Field(default=10000, ge=100)
    github_api_base_url: str = "https://api.github.com"
    github_user_agent: str = "mergewise-worker"
    github_request_timeout_ms: int = Field(default=10000, ge=100)
    github_fetch_retries: int = Field(default=2, ge=0)
    github_retry_delay_ms: int = Field(default=250, ge=10)
    confidence_threshold: float = Field(default=0.78, ge=0.0, le=1.0)
    max_comments: int = Field(default=20, ge=1)
    delivery_mode: DeliveryMode = DeliveryMode.DISABLED
    job_file_path: str = DEFAULT_JOB_FILE_PATH

    model_config = {"frozen": True}

    @property
    def normalized_github_api_base_url(self) -> str:
        """Return the GitHub API base URL without a trailing slash."""
        return self.github_api_base_url.rstrip("/")

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def github_request_timeout_seconds(self) -> float:
        return self.github_request_timeout_ms / 1000

    @property
    def github_retry_delay_seconds(self) -> float:
        return self.github_retry_delay_ms / 1000

    @property
    def delivery_enabled(self) -> bool:
        return self.delivery_mode is DeliveryMode.COMMENTS


def _read_int(name: str, default: str, *, minimum: int) -> int:
    raw_value = os.getenv(name, default)
    try:
        value = int(raw_value.strip())
    except ValueError as exc:
        raise SettingsError(f"Invalid {name} value: {raw_value}") from exc
    if value < minimum:
        raise SettingsError(f"Invalid {name} value: {raw_value}")
    return value


def _read_non_empty(name: str, default: str) -> str:
    raw_value = os.getenv(name, default)
    if not raw_value.strip():
        raise SettingsError(f"Invalid {name} value: empty")
    return raw_value.strip()


def _read_confidence(name: str, default: str) -> float:
    raw_value = os.getenv(name, default)
    try:
        value = float(raw_value.strip())
    except ValueError as exc:
        raise SettingsError(f"Invalid {name} value: {raw_value}") from exc
    if not 0.0 <= value <= 1.0:
        raise SettingsError(f"Invalid {name} value: {raw_value}")
    return value


def _read_delivery_mode(name: str, default: str) -> DeliveryMode:
    raw_value = os.getenv(name, default)
    try:
        return DeliveryMode(raw_value.strip().lower())
    except ValueError as exc:
        allowed = ", ".join(mode.value for mode in DeliveryMode)
        raise SettingsError(f"Invalid {name} value: {raw_value} (expected one of: {allowed})") from exc


def _build_settings() -> WorkerSettings:
    poll_interval_ms = _read_int("WORKER_POLL_INTERVAL_MS", "3000", minimum=250)
    max_processed_keys = _read_int("WORKER_MAX_PROCESSED_KEYS", "10000", minimum=100)
    github_api_base_url = _read_non_empty("GITHUB_API_BASE_URL", "https://api.github.com")
    github_user_agent = _read_non_empty("WORKER_GITHUB_USER_AGENT", "mergewise-worker")
    github_request_timeout_ms = _read_int("WORKER_GITHUB_REQUEST_TIMEOUT_MS", "10000", minimum=100)
    github_fetch_retries = _read_int("WORKER_GITHUB_FETCH_RETRIES", "2", minimum=0)
    github_retry_delay_ms = _read_int("WORKER_GITHUB_RETRY_DELAY_MS", "250", minimum=10)
    confidence_threshold = _read_confidence("WORKER_FINDING_CONFIDENCE_THRESHOLD", "0.78")
    max_comments = _read_int("WORKER_FINDING_MAX_COMMENTS", "20", minimum=1)
    delivery_mode = _read_delivery_mode("WORKER_DELIVERY_MODE", DeliveryMode.DISABLED.value)
    job_file_path = _read_non_empty("WORKER_JOB_FILE", DEFAULT_JOB_FILE_PATH)

    try:
        return WorkerSettings(
            poll_interval_ms=poll_interval_ms,
            max_processed_keys=max_processed_keys,
            github_api_base_url=github_api_base_url,
            github_user_agent=github_user_agent,
            github_request_timeout_ms=github_request_timeout_ms,
            github_fetch_retries=github_fetch_retries,
            github_retry_delay_ms=github_retry_delay_ms,
            confidence_threshold=confidence_threshold,
            max_comments=max_comments,
            delivery_mode=delivery_mode,
            job_file_path=job_file_path,
        )
    except ValidationError as exc:  # pragma: no cover - guarded by the readers above
        raise SettingsError(f"Invalid worker configuration: {exc}") from exc


def require_github_app_credentials() -> GitHubAppCredentials:
    """Resolve GitHub App credentials, naming the offending variable on failure."""

    app_id_raw = os.getenv("GITHUB_APP_ID")
    if not app_id_raw or not app_id_raw.strip():
        raise SettingsError("Missing GITHUB_APP_ID environment variable.")
    try:
        app_id = int(app_id_raw.strip())
    except ValueError as exc:
        raise SettingsError(f"Invalid GITHUB_APP_ID value: {app_id_raw}") from exc
    if app_id <= 0:
        raise SettingsError(f"Invalid GITHUB_APP_ID value: {app_id_raw}")

    preferred_key = os.getenv("GITHUB_APP_PRIVATE_KEY")
    legacy_key = os.getenv("GITHUB_APP_PRIVATE_KEY_PEM")
    key_variable = "GITHUB_APP_PRIVATE_KEY" if preferred_key is not None else "GITHUB_APP_PRIVATE_KEY_PEM"
    private_key_raw = preferred_key if preferred_key is not None else legacy_key
    if private_key_raw is None:
        raise SettingsError(
            "Missing GITHUB_APP_PRIVATE_KEY (or legacy GITHUB_APP_PRIVATE_KEY_PEM) environment variable."
        )

    # Normalize private key: handle escaped newlines from environment variables
    private_key_pem = private_key_raw.replace("\\n", "\n").strip()
    if not private_key_pem:
        raise SettingsError(f"Invalid {key_variable} value: empty")

    return GitHubAppCredentials(app_id=app_id, private_key_pem=private_key_pem)


@lru_cache(maxsize=1)
def _cached_settings() -> WorkerSettings:
    return _build_settings()


def get_settings() -> WorkerSettings:
    """Retrieve cached worker settings."""
    return _cached_settings()


def reset_settings_cache() -> None:
    """Clear the cached settings (primarily for tests)."""
    _cached_settings.cache_clear()
