"""
Configuration management (SSOT).

This module defines ALL configuration for the receipt-review client.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- base_url is the API root; every endpoint path is appended to it
- Tokens come from the session file or the environment, never from logs
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class ApiConfig:
    """Backend API configuration.

    token is optional: when empty, the token stored in the session file
    (see receipt_review.auth.SessionContext) is used instead.
    """

    base_url: str = "http://localhost:3000/api"
    token: str = ""
    # Request timeout for ordinary request/response calls (seconds)
    timeout_seconds: int = 30
    max_retries: int = 3
    backoff_factor: float = 0.5


@dataclass
class StreamConfig:
    """Progress stream settings.

    The extraction stream has no read timeout: jobs are long-running and the
    stream ends when the server closes the connection.
    """

    connect_timeout_seconds: float = 10.0
    write_timeout_seconds: float = 30.0


@dataclass
class ReviewConfig:
    """Review workflow settings."""

    # Count skipped transactions as pending work when deciding whether a
    # session can be continued.
    resume_skipped: bool = False
    # Pause before reporting a resolved clarification (seconds)
    resolve_delay_seconds: float = 1.0
    # Fields that must be filled in before a card can be approved
    required_fields: list[str] = field(default_factory=lambda: ["description", "category_id"])


@dataclass
class Config:
    """Application configuration (SSOT)."""

    api: ApiConfig = field(default_factory=ApiConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    review: ReviewConfig = field(default_factory=ReviewConfig)
    session_file: Path = field(default_factory=lambda: Path("data/session.json"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.api.base_url:
            errors.append("api.base_url is required")
        elif not self.api.base_url.startswith(("http://", "https://")):
            errors.append("api.base_url must start with http:// or https://")

        if self.api.timeout_seconds <= 0:
            errors.append("api.timeout_seconds must be positive")
        if self.api.max_retries < 0:
            errors.append("api.max_retries must be >= 0")
        if self.review.resolve_delay_seconds < 0:
            errors.append("review.resolve_delay_seconds must be >= 0")

        return errors


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").lower()
    if value == "true":
        return True
    if value == "false":
        return False
    return default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - RECEIPT_REVIEW_API_URL
    - RECEIPT_REVIEW_TOKEN
    - RECEIPT_REVIEW_SESSION_FILE
    - RECEIPT_REVIEW_RESUME_SKIPPED (true/false)

    Raises:
        ConfigValidationError: If the resulting configuration is invalid
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    api_data = data.get("api", {})
    api = ApiConfig(
        base_url=os.environ.get(
            "RECEIPT_REVIEW_API_URL", api_data.get("base_url", "http://localhost:3000/api")
        ).rstrip("/"),
        token=os.environ.get("RECEIPT_REVIEW_TOKEN", api_data.get("token") or ""),
        timeout_seconds=int(api_data.get("timeout_seconds", 30)),
        max_retries=int(api_data.get("max_retries", 3)),
        backoff_factor=float(api_data.get("backoff_factor", 0.5)),
    )

    stream_data = data.get("stream", {})
    stream = StreamConfig(
        connect_timeout_seconds=float(stream_data.get("connect_timeout_seconds", 10.0)),
        write_timeout_seconds=float(stream_data.get("write_timeout_seconds", 30.0)),
    )

    review_data = data.get("review", {})
    review = ReviewConfig(
        resume_skipped=_env_bool(
            "RECEIPT_REVIEW_RESUME_SKIPPED", review_data.get("resume_skipped", False)
        ),
        resolve_delay_seconds=float(review_data.get("resolve_delay_seconds", 1.0)),
        required_fields=list(
            review_data.get("required_fields", ["description", "category_id"])
        ),
    )

    session_file = os.environ.get(
        "RECEIPT_REVIEW_SESSION_FILE", data.get("session_file", "data/session.json")
    )

    config = Config(
        api=api,
        stream=stream,
        review=review,
        session_file=Path(session_file),
    )

    errors = config.validate()
    if errors:
        raise ConfigValidationError("; ".join(errors))

    return config


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Receipt review client configuration

api:
  base_url: "http://localhost:3000/api"   # Backend API root
  token: null                             # Optional; `receipt-review login` stores one
  timeout_seconds: 30
  max_retries: 3
  backoff_factor: 0.5

# Progress stream (no read timeout: extraction jobs are long-running)
stream:
  connect_timeout_seconds: 10
  write_timeout_seconds: 30

review:
  resume_skipped: false                   # Offer "continue" for sessions with skipped items
  resolve_delay_seconds: 1.0              # Pause after a clarification resolves
  required_fields:
    - description
    - category_id

# Where the signed-in session is kept
session_file: "data/session.json"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
