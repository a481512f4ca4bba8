"""Configuration loading for the imgflow client."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import keyring


SERVICE_NAME = "imgflow"
KEY_NAME = "api_token"
TOKEN_ENV_VAR = "IMGFLOW_API_TOKEN"
BASE_URL_ENV_VAR = "IMGFLOW_BASE_URL"

DEFAULT_CONFIG_PATH = Path("config/imgflow_config.json")
MAX_UPLOAD_BYTES = 32 * 1024 * 1024


def get_api_token() -> str | None:
    """Get the service API token: system keyring first, then env var.

    The processing service may run without authentication, so a missing
    token is not an error.
    """
    token = keyring.get_password(SERVICE_NAME, KEY_NAME)
    if token:
        return token
    return os.environ.get(TOKEN_ENV_VAR) or None


def set_api_token(token: str) -> None:
    """Store the API token in the system keyring."""
    keyring.set_password(SERVICE_NAME, KEY_NAME, token)


@dataclass
class ImgflowConfig:
    """Settings for the transport client, poller, upload guard and gallery.

    Defaults mirror the service's documented limits: a 32 MiB upload
    ceiling, 2 s polling for at most 60 attempts, and 12 records per page.
    """

    base_url: str = "http://localhost:8080/api/v1"
    timeout_seconds: float = 30.0
    api_token: str | None = None
    poll_interval_ms: int = 2000
    poll_max_attempts: int = 60
    max_file_size: int = MAX_UPLOAD_BYTES
    allowed_mime_types: frozenset[str] = field(
        default_factory=lambda: frozenset(
            {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
        )
    )
    page_size: int = 12

    def __post_init__(self) -> None:
        if not isinstance(self.allowed_mime_types, frozenset):
            self.allowed_mime_types = frozenset(self.allowed_mime_types)
        if self.poll_max_attempts < 1:
            raise ValueError("poll_max_attempts must be at least 1")
        if self.poll_interval_ms < 0:
            raise ValueError("poll_interval_ms must not be negative")
        if self.page_size < 1:
            raise ValueError("page_size must be at least 1")


def load_config(config_path: Path | None = None) -> ImgflowConfig:
    """Load configuration from JSON, falling back to defaults.

    Reads ``config/imgflow_config.json`` when *config_path* is ``None``.
    Unknown keys are ignored.  ``IMGFLOW_BASE_URL`` overrides the file, and
    the API token is filled from the keyring or ``IMGFLOW_API_TOKEN`` when
    the file does not set one.

    Args:
        config_path: Optional explicit path to the JSON file.

    Returns:
        ImgflowConfig populated from file, environment and keyring.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    data: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            data = json.load(f)

    field_names = {f.name for f in fields(ImgflowConfig)}
    kwargs = {k: v for k, v in data.items() if k in field_names}

    env_url = os.environ.get(BASE_URL_ENV_VAR)
    if env_url:
        kwargs["base_url"] = env_url

    config = ImgflowConfig(**kwargs)

    if config.api_token is None:
        config.api_token = get_api_token()

    return config
