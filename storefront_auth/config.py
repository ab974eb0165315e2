"""Configuration system for storefront-auth using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.storefront_auth] section (project-level)
3. ./storefront_auth.toml (project-level, explicit)
4. ~/.config/storefront_auth/config.toml (user-level, overrides project)
5. Environment variables (highest priority)

Environment variables use the STOREFRONT_AUTH_ prefix with nested delimiter __.
Example: STOREFRONT_AUTH_PROVIDER__URL, STOREFRONT_AUTH_PKCE__MAX_ATTEMPTS
"""

from __future__ import annotations

import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    # Project-level pyproject.toml [tool.storefront_auth] (lowest file priority)
    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    explicit = Path("storefront_auth.toml")
    if explicit.exists():
        files.append(explicit)

    # User-level config (overrides project configs)
    if sys.platform == "win32":
        user_config = Path(os.environ.get("APPDATA", "~")) / "storefront_auth" / "config.toml"
    else:
        user_config = Path("~/.config/storefront_auth/config.toml")
    user_config = user_config.expanduser()
    if user_config.exists():
        files.append(user_config)

    # Environment variable override for config file (highest file priority)
    env_config = os.environ.get("STOREFRONT_AUTH_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError):
            continue

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("storefront_auth", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {
    "anon_key",
    "redis_url",
}

_REDACTED = "********"


class ProviderSettings(BaseSettings):
    """Identity provider connection settings.

    Environment prefix: STOREFRONT_AUTH_PROVIDER__
    Example: STOREFRONT_AUTH_PROVIDER__URL=https://project.supabase.co
    """

    model_config = SettingsConfigDict(
        env_prefix="STOREFRONT_AUTH_PROVIDER__",
        extra="ignore",
    )

    url: str = Field(
        default="",
        description="Base URL of the GoTrue-compatible identity provider",
    )
    anon_key: str = Field(
        default="",
        description="Public API key sent in the apikey header",
    )
    oauth_provider: str = Field(
        default="google",
        description="Social provider used by sign_in_with_oauth",
    )
    redirect_url: str = Field(
        default="",
        description="Callback URL the provider redirects to after authorization",
    )
    scopes: str = Field(
        default="",
        description="Space-separated extra scopes requested from the social provider",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout for provider requests",
    )

    @field_validator("url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        """Normalise the base URL."""
        return v.rstrip("/")


class SessionSettings(BaseSettings):
    """Session persistence and refresh policy.

    Environment prefix: STOREFRONT_AUTH_SESSION__
    """

    model_config = SettingsConfigDict(
        env_prefix="STOREFRONT_AUTH_SESSION__",
        extra="ignore",
    )

    key_prefix: str = "supabase_"
    refresh_threshold_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Refresh when the access token expires sooner than this",
    )
    refresh_cooldown_seconds: float = Field(
        default=10.0,
        ge=0,
        description="Minimum spacing between refresh attempts",
    )


class PkceSettings(BaseSettings):
    """PKCE verifier persistence.

    Environment prefix: STOREFRONT_AUTH_PKCE__
    """

    model_config = SettingsConfigDict(
        env_prefix="STOREFRONT_AUTH_PKCE__",
        extra="ignore",
    )

    verifier_key: str = "supabase_pkce_verifier"
    return_url_key: str = "oauth_return_url"
    verify_delay_seconds: float = Field(default=0.05, ge=0)
    max_attempts: int = Field(default=3, ge=1, le=10)
    backoff_seconds: float = Field(
        default=0.1,
        ge=0,
        description="Backoff step; attempt n waits n * backoff_seconds",
    )


class MfaSettings(BaseSettings):
    """TOTP enrollment settings.

    Environment prefix: STOREFRONT_AUTH_MFA__
    """

    model_config = SettingsConfigDict(
        env_prefix="STOREFRONT_AUTH_MFA__",
        extra="ignore",
    )

    issuer: str = "Storefront"
    default_friendly_name: str = "Authenticator app"


class StorageSettings(BaseSettings):
    """Credential store backend selection.

    Environment prefix: STOREFRONT_AUTH_STORAGE__
    """

    model_config = SettingsConfigDict(
        env_prefix="STOREFRONT_AUTH_STORAGE__",
        extra="ignore",
    )

    backend: Literal["memory", "keyring", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    prefix: str = "storefront"
    service_name: str = "storefront-auth"


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: STOREFRONT_AUTH_LOG__
    Example: STOREFRONT_AUTH_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="STOREFRONT_AUTH_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


class AuthSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.storefront_auth] section
    3. ./storefront_auth.toml (project-level)
    4. ~/.config/storefront_auth/config.toml (user-level, overrides project)
    5. Environment variables (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="STOREFRONT_AUTH_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    pkce: PkceSettings = Field(default_factory=PkceSettings)
    mfa: MfaSettings = Field(default_factory=MfaSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    def __init__(self, **data: Any) -> None:
        # Explicit keyword arguments take precedence over TOML files
        merged = _deep_merge(_load_toml_config(), data)
        super().__init__(**merged)

    def show(self) -> str:
        """Format settings as a readable table with secrets redacted."""
        lines = ["storefront-auth configuration", "=" * 60]

        sections = [
            ("Identity provider", "provider"),
            ("Session", "session"),
            ("PKCE", "pkce"),
            ("MFA", "mfa"),
            ("Storage", "storage"),
            ("Logging", "log"),
        ]

        all_data = self.model_dump(
            exclude={attr: _SENSITIVE_FIELDS for _, attr in sections},
        )

        for display_name, attr_name in sections:
            lines.append(f"\n{display_name}")
            lines.append("-" * 40)
            for field_name, field_value in all_data.get(attr_name, {}).items():
                value_str = str(field_value)
                if len(value_str) > 50:
                    value_str = value_str[:47] + "..."
                lines.append(f"  {field_name:28} = {value_str}")
            section_cls = type(getattr(self, attr_name))
            lines.extend(
                f"  {rn:28} = {_REDACTED}"
                for rn in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys())
            )

        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> AuthSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return AuthSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> AuthSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()
