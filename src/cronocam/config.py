"""
Configuration management using Pydantic for validation.

Supports loading from:
- YAML files (primary)
- Environment variables with CRONOCAM_ prefix (these win over YAML values)
"""

import os
from contextvars import ContextVar
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    InitSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

DEFAULT_SUPPORTED_IMAGES = [
    ".jpg", ".jpeg", ".png", ".gif", ".heic", ".heif", ".webp", ".tiff", ".tif", ".bmp",
]
DEFAULT_SUPPORTED_VIDEOS = [
    ".mpg", ".mpeg", ".avi", ".mov", ".mp4", ".m4v", ".wmv", ".3gp", ".3g2", ".mkv",
    ".mts", ".m2ts",
]

# Values read by Settings.from_yaml; they rank below environment variables
_yaml_values: ContextVar[dict | None] = ContextVar("_yaml_values", default=None)


def _normalize_extensions(v):
    """Accept a list or a comma-separated string; return lowercase dotted extensions."""
    if isinstance(v, str):
        v = v.split(",")
    if isinstance(v, (list, tuple, set)):
        result = []
        for ext in v:
            ext = str(ext).strip().lower()
            if not ext:
                continue
            result.append(ext if ext.startswith(".") else f".{ext}")
        return result
    return v


class RateLimitSettings(BaseModel):
    """Throttling of media item creation calls."""

    requests_per_second: float = Field(
        default=5,
        gt=0,
        description="Permits added to the bucket per second",
    )
    max_burst: int = Field(
        default=10,
        ge=1,
        description="Maximum permits the bucket can hold",
    )


class Settings(BaseSettings):
    """
    Main application settings.

    Can be loaded from:
    - YAML file: Settings.from_yaml("config.yaml")
    - Environment variables: CRONOCAM_LOG_LEVEL=DEBUG, CRONOCAM_RATE_LIMIT__MAX_BURST=4
    """

    model_config = SettingsConfigDict(
        env_prefix="CRONOCAM_",
        env_nested_delimiter="__",
        extra="ignore",  # Ignore unknown fields for forward compatibility
    )

    credentials_path: Path = Field(
        default=Path("config/credentials.json"),
        description="OAuth client secret JSON downloaded from the Google Cloud console",
    )
    token_path: Path | None = Field(
        default=None,
        description="Where the OAuth token is cached (default: token.json next to credentials)",
    )
    database_path: Path = Field(
        default=Path("data/uploads.db"),
        description="SQLite ledger of uploaded files",
    )
    chunk_size: int = Field(
        default=5 * 1024 * 1024,
        ge=1,
        description="Bytes sent per resumable upload request",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        description="Extra attempts for media item creation after the first (0 = try once)",
    )
    backoff_unit: float = Field(
        default=1.0,
        ge=0.0,
        description="Seconds per backoff unit; attempt n waits n * 2 units",
    )
    request_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Per-request HTTP timeout in seconds",
    )
    rate_limit: RateLimitSettings = Field(
        default_factory=RateLimitSettings,
        description="Media item creation rate limit",
    )
    supported_images: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SUPPORTED_IMAGES),
        description="Image extensions to upload",
    )
    supported_videos: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SUPPORTED_VIDEOS),
        description="Video extensions to upload",
    )
    album_name: str | None = Field(
        default=None,
        description="Optional album to add uploaded items to",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("supported_images", "supported_videos", mode="before")
    @classmethod
    def parse_extensions(cls, v):
        return _normalize_extensions(v)

    @field_validator("credentials_path", "database_path", mode="before")
    @classmethod
    def parse_path(cls, v):
        """Convert string path to Path object."""
        if isinstance(v, str):
            return Path(v).expanduser()
        return v

    @model_validator(mode="after")
    def default_token_path(self) -> "Settings":
        """Keep the token next to the credentials file unless told otherwise."""
        if self.token_path is None:
            self.token_path = self.credentials_path.parent / "token.json"
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Priority: constructor kwargs, then CRONOCAM_* env vars, then the YAML file
        sources = [init_settings, env_settings]
        yaml_values = _yaml_values.get()
        if yaml_values:
            sources.append(InitSettingsSource(settings_cls, init_kwargs=yaml_values))
        sources.extend([dotenv_settings, file_secret_settings])
        return tuple(sources)

    def supported_formats(self) -> frozenset[str]:
        """All extensions (images and videos) eligible for upload."""
        return frozenset(self.supported_images) | frozenset(self.supported_videos)

    def ensure_directories(self) -> None:
        """Create the directories holding credentials, token and database."""
        for directory in {
            self.credentials_path.parent,
            self.token_path.parent,
            self.database_path.parent,
        }:
            directory.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_yaml(cls, path: Path | str) -> "Settings":
        """
        Load settings from a YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            Settings instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Configuration file must contain a mapping: {path}")

        token = _yaml_values.set(data)
        try:
            return cls()
        finally:
            _yaml_values.reset(token)

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Settings":
        """
        Load settings from ``path``, or from the first config file found.

        Searches ./config.yaml, then $XDG_CONFIG_HOME/cronocam/config.yaml
        (~/.config when unset). Falls back to defaults plus environment.
        """
        if path is not None:
            return cls.from_yaml(path)

        for candidate in default_config_paths():
            if candidate.exists():
                return cls.from_yaml(candidate)
        return cls()

    def to_yaml(self, path: Path | str) -> None:
        """Save settings to a YAML file."""
        path = Path(path)
        data = self.model_dump(mode="json")

        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def default_config_paths() -> list[Path]:
    config_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(config_home) if config_home else Path.home() / ".config"
    return [Path("config.yaml"), base / "cronocam" / "config.yaml"]
