"""
config/config.py

Purpose
-------
Centralized settings for the retrying API client.
- Normalizes environment variable names across legacy and canonical variants.
- Provides typed defaults for the API base URL and the default retry policy.

Notes for Maintainers
---------------------
- Backward compatibility: the frontend-era ``VITE_API_URL`` alias is accepted.
- ``HTTP_RETRYABLE_STATUSES`` can be provided as a JSON list or as "408,429,503".
- Set ``SETTINGS_SKIP_DOTENV=1`` to ignore a local ``.env`` file (tests do).

Examples
--------
# Bash:
export API_URL='https://api.example.com'
export HTTP_RETRYABLE_STATUSES='429,503'
"""

from __future__ import annotations

import json
import os
from typing import Annotated, Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode

DEFAULT_RETRYABLE_STATUSES: List[int] = [408, 429, 500, 502, 503, 504]

_NUMERIC_DEFAULTS: Dict[str, Any] = {
    "http_timeout_seconds": 30.0,
    "http_max_retries": 3,
    "http_initial_delay_seconds": 1.0,
    "http_max_delay_seconds": 10.0,
    "http_backoff_factor": 2.0,
}

if os.getenv("SETTINGS_SKIP_DOTENV") != "1":
    load_dotenv(override=False)


# -----------------------------
# Helper functions
# -----------------------------
def _coalesce_env(*names: str, default: Optional[str] = None) -> Optional[str]:
    """Return the first non-empty environment variable from *names*."""
    for name in names:
        val = os.getenv(name)
        if val is not None and str(val).strip() != "":
            return val
    return default


def _parse_int(value: Optional[str], *, default: int) -> int:
    if value is None or str(value).strip() == "":
        return default
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def _parse_float(value: Optional[str], *, default: float) -> float:
    if value is None or str(value).strip() == "":
        return default
    try:
        return float(str(value).strip())
    except ValueError:
        return default


def _parse_status_list(value: Optional[str]) -> List[int]:
    """
    Parse retryable status codes from env.

    Supported formats:
      - JSON: [429, 503]
      - Simple string: "429,503" (whitespace and empty items ignored)
    """
    if value is None or str(value).strip() == "":
        return list(DEFAULT_RETRYABLE_STATUSES)

    raw = str(value).strip()
    try:
        parsed = json.loads(raw)
        if isinstance(parsed, list):
            return [int(item) for item in parsed]
    except (json.JSONDecodeError, TypeError, ValueError):
        pass

    result: List[int] = []
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            result.append(int(item))
        except ValueError:
            return list(DEFAULT_RETRYABLE_STATUSES)
    return result or list(DEFAULT_RETRYABLE_STATUSES)


# -----------------------------
# Main Settings
# -----------------------------
class Settings(BaseSettings):
    # --- API endpoint ---
    api_base_url: Optional[str] = Field(
        default_factory=lambda: _coalesce_env("API_URL", "WADI_API_URL", "VITE_API_URL")
    )

    # --- HTTP transport ---
    http_timeout_seconds: float = Field(
        default_factory=lambda: _parse_float(
            _coalesce_env("HTTP_TIMEOUT_SECONDS"), default=30.0
        )
    )

    # --- Retry policy defaults ---
    http_max_retries: int = Field(
        default_factory=lambda: _parse_int(_coalesce_env("HTTP_MAX_RETRIES"), default=3)
    )
    http_initial_delay_seconds: float = Field(
        default_factory=lambda: _parse_float(
            _coalesce_env("HTTP_INITIAL_DELAY_SECONDS"), default=1.0
        )
    )
    http_max_delay_seconds: float = Field(
        default_factory=lambda: _parse_float(
            _coalesce_env("HTTP_MAX_DELAY_SECONDS"), default=10.0
        )
    )
    http_backoff_factor: float = Field(
        default_factory=lambda: _parse_float(
            _coalesce_env("HTTP_BACKOFF_FACTOR"), default=2.0
        )
    )
    http_retryable_statuses: Annotated[List[int], NoDecode] = Field(
        default_factory=lambda: _parse_status_list(
            _coalesce_env("HTTP_RETRYABLE_STATUSES")
        )
    )

    # --- Logging ---
    log_level: str = Field(default_factory=lambda: _coalesce_env("LOG_LEVEL") or "INFO")

    class Config:
        case_sensitive = False
        validate_default = True

    @field_validator("api_base_url", mode="after")
    def _strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        stripped = v.strip().rstrip("/")
        return stripped or None

    # Explanation:
    # pydantic-settings also reads HTTP_* variables by field name; garbage values
    # fall back to the field default instead of failing the whole settings load.
    @field_validator(*_NUMERIC_DEFAULTS, mode="before")
    def _coerce_numeric(cls, v: Any, info: ValidationInfo) -> Any:
        if not isinstance(v, str):
            return v
        default = _NUMERIC_DEFAULTS[info.field_name]
        if isinstance(default, int):
            return _parse_int(v, default=default)
        return _parse_float(v, default=default)

    @field_validator("http_retryable_statuses", mode="before")
    def _coerce_statuses(cls, v: Any) -> List[int]:
        if isinstance(v, str):
            return _parse_status_list(v)
        return v

    @field_validator("log_level", mode="after")
    def _upper_log_level(cls, v: str) -> str:
        return v.strip().upper() or "INFO"


# Singleton settings instance
settings = Settings()
