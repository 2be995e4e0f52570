"""Runner configuration.

Settings are read from ``SYSCMD_*`` environment variables (or a ``.env``
file). None of these values are secret themselves; the secret values are
looked up at run time from the variables named in ``sensitive_env_vars``.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_SENSITIVE_ENV_VARS: tuple[str, ...] = (
    "PASSWORD",
    "HOMEBREW_PASSWORD",
    "GITHUB_TOKEN",
    "HOMEBREW_GITHUB_API_TOKEN",
    "API_TOKEN",
    "API_KEY",
)


class RunnerSettings(BaseSettings):
    """Settings for the command runner."""

    model_config = SettingsConfigDict(
        env_prefix="SYSCMD_",
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Redaction
    mask: str = "******"
    sensitive_env_vars: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_SENSITIVE_ENV_VARS)
    )
    redact_captured_output: bool = False

    # Wrapper binaries, resolved through the same search path as the command
    env_binary: str = "env"
    sudo_binary: str = "sudo"

    read_chunk_size: int = Field(default=65536, ge=1)

    @field_validator("mask", "env_binary", "sudo_binary", mode="before")
    @classmethod
    def _normalize_env_string(cls, value: Any) -> Any:
        """Normalizes env var strings.

        ``docker --env-file`` does not strip quotes, so a single pair of
        surrounding quotes is removed along with whitespace.
        """

        if value is None or not isinstance(value, str):
            return value
        text = value.strip()
        if len(text) >= 2 and ((text[0] == text[-1] == '"') or (text[0] == text[-1] == "'")):
            text = text[1:-1].strip()
        return text

    @field_validator("sensitive_env_vars", mode="before")
    @classmethod
    def _split_names(cls, value: Any) -> Any:
        """Accepts a comma-separated list, e.g. ``SYSCMD_SENSITIVE_ENV_VARS=PASSWORD,TOKEN``."""

        if isinstance(value, str):
            return [name.strip() for name in value.split(",") if name.strip()]
        return value

    @field_validator("mask")
    @classmethod
    def _mask_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("mask must not be empty.")
        return value
