"""
captionline.config - YAML config loading, profile merging, validation.

Loads captionline.yaml, applies speed-profile defaults and environment
overrides for secrets, and validates everything once at startup.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from captionline.exceptions import ConfigError

CONFIG_FILENAME = "captionline.yaml"

ENV_OVERRIDES = {
    "CAPTIONLINE_API_KEY": "catalog_api_key",
    "CAPTIONLINE_TRANSLATION_MODEL": "translation_model",
}

DEFAULT_AUDIO_FILTERS = [
    "highpass=f=300",
    "lowpass=f=3400",
    "compand=attacks=0.3:decays=0.8:points=-80/-80|-45/-15|-27/-9|0/-7|20/-7",
    "afftdn=nf=-25",
]

DEFAULT_PLACEHOLDER_PATTERNS = [
    r"\bPLACEHOLDER\b",
    r"\[(?:translation|untranslated)[^\]]*\]",
]


class RetrySettings(BaseModel):
    """Backoff parameters for remote calls."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=30.0, ge=0.0)
    max_delay: float = Field(default=300.0, ge=0.0)
    max_auth_refreshes: int = Field(default=2, ge=0)


class VerificationPolicy(BaseModel):
    """Heuristics used by the verification gate and the translation stage."""

    min_size_bytes: int = Field(default=64, ge=1)
    require_header: bool = True
    placeholder_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PLACEHOLDER_PATTERNS)
    )

    @field_validator("placeholder_patterns")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid placeholder pattern {pattern!r}: {e}") from e
        return v


class CaptionlineConfig(BaseModel):
    """Resolved configuration for a captionline run."""

    profile: str = "full"

    catalog_base_url: str = "https://ws.api.video"
    catalog_api_key: str | None = None
    page_size: int = Field(default=100, gt=0)
    token_refresh_margin: float = Field(default=300.0, ge=0.0)

    output_dir: Path = Path("output")
    temp_dir: Path = Path("temp")

    languages: list[str] = Field(default_factory=lambda: ["ar", "en", "fr", "es", "it"])
    default_source_language: str = "en"

    workers: int = Field(default=3, ge=1)
    translation_concurrency: int = Field(default=1, ge=1)
    translation_batch_size: int = Field(default=10, ge=1)
    strict_translation: bool = True
    batch_delay_seconds: float = Field(default=5.0, ge=0.0)
    language_delay_seconds: float = Field(default=10.0, ge=0.0)

    translation_model: str | None = None
    translation_models: list[str] = Field(
        default_factory=lambda: [
            "openrouter/deepseek/deepseek-chat",
            "openrouter/mistralai/mistral-small",
            "openrouter/openai/gpt-4o-mini",
        ]
    )
    translation_timeout: float = Field(default=60.0, gt=0.0)
    translation_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    prompts_dir: Path | None = None

    download_timeout: float = Field(default=300.0, gt=0.0)

    ffmpeg_bin: str = "ffmpeg"
    audio_filters: list[str] = Field(default_factory=lambda: list(DEFAULT_AUDIO_FILTERS))
    extraction_timeout: float = Field(default=600.0, gt=0.0)

    whisper_bin: str = "./whisper.cpp/main"
    whisper_model: str = "./whisper.cpp/models/ggml-base.bin"
    whisper_language: str = "auto"
    transcription_timeout: float = Field(default=1800.0, gt=0.0)
    transcription_batch_size: int = Field(default=25, ge=1)
    transcription_concurrency: int = Field(default=1, ge=1)

    item_max_attempts: int = Field(default=3, ge=1)
    item_backoff_base: float = Field(default=2.0, ge=0.0)
    item_backoff_max: float = Field(default=60.0, ge=0.0)

    retry: RetrySettings = Field(default_factory=RetrySettings)
    verification: VerificationPolicy = Field(default_factory=VerificationPolicy)

    upload_captions: bool = False
    skip_existing: bool = True
    max_items: int | None = Field(default=None, gt=0)
    last_n_days: int | None = Field(default=None, gt=0)

    progress_interval: float = Field(default=5.0, ge=0.0)

    config_path: Path | None = None

    @field_validator("profile")
    @classmethod
    def validate_profile(cls, v: str) -> str:
        if v not in BUILTIN_PROFILES:
            raise ValueError(f"profile must be one of: {sorted(BUILTIN_PROFILES)}")
        return v

    @field_validator("languages")
    @classmethod
    def validate_languages(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("languages must not be empty")
        normalized = [code.strip().lower() for code in v]
        if len(set(normalized)) != len(normalized):
            raise ValueError("languages must not contain duplicates")
        return normalized

    @field_validator("default_source_language")
    @classmethod
    def validate_source_language(cls, v: str) -> str:
        return v.strip().lower()


BUILTIN_PROFILES: dict[str, dict[str, Any]] = {
    "turbo": {
        "max_items": 10,
        "workers": 5,
        "translation_batch_size": 20,
        "skip_existing": True,
    },
    "fast": {
        "last_n_days": 7,
        "workers": 5,
        "translation_batch_size": 15,
        "skip_existing": True,
    },
    "balanced": {
        "max_items": 100,
        "workers": 3,
        "translation_batch_size": 12,
        "skip_existing": True,
    },
    "full": {
        "workers": 3,
        "translation_batch_size": 10,
        "skip_existing": True,
    },
    "resume": {
        "workers": 4,
        "translation_batch_size": 15,
        "skip_existing": True,
    },
}


def load_profile(name: str) -> dict[str, Any]:
    """Return a copy of a built-in speed profile."""
    if name in BUILTIN_PROFILES:
        return BUILTIN_PROFILES[name].copy()
    raise ConfigError(f"Unknown profile: {name}")


def merge_config(project_config: dict[str, Any], profile: dict[str, Any]) -> dict[str, Any]:
    """Merge file config over profile defaults. File config takes precedence."""
    merged = profile.copy()
    for key, value in project_config.items():
        if key in ("retry", "verification") and isinstance(value, dict):
            section = dict(merged.get(key) or {})
            section.update(value)
            merged[key] = section
        elif value is not None:
            merged[key] = value
    return merged


def apply_env_overrides(
    config: dict[str, Any], environ: dict[str, str] | None = None
) -> dict[str, Any]:
    """Overlay secrets and model selection from environment variables."""
    env = os.environ if environ is None else environ
    result = dict(config)
    for var, key in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            result[key] = value
    return result


def build_config(
    raw_config: dict[str, Any],
    overrides: dict[str, Any] | None = None,
    environ: dict[str, str] | None = None,
) -> CaptionlineConfig:
    """Resolve profile, file values, environment and explicit overrides.

    Args:
        raw_config: Values read from captionline.yaml (may be empty)
        overrides: Values from the command line; highest precedence
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated CaptionlineConfig

    Raises:
        ConfigError: If the profile is unknown or a value fails validation
    """
    cleaned_overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
    profile_name = cleaned_overrides.get("profile") or raw_config.get("profile", "full")
    profile = load_profile(profile_name)

    merged = merge_config(raw_config, profile)
    merged = apply_env_overrides(merged, environ)
    merged = merge_config(cleaned_overrides, merged)
    merged["profile"] = profile_name

    try:
        return CaptionlineConfig(**merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def load_config(
    config_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
    environ: dict[str, str] | None = None,
) -> CaptionlineConfig:
    """Load and validate configuration.

    When ``config_path`` is None, ``captionline.yaml`` in the current
    directory is used if present; otherwise defaults apply.

    Raises:
        FileNotFoundError: If an explicit config_path does not exist
        ConfigError: If the file or values are invalid
    """
    if config_path is None:
        candidate = Path.cwd() / CONFIG_FILENAME
        config_path = candidate if candidate.exists() else None
    elif not config_path.exists():
        raise FileNotFoundError(f"No config file found at {config_path}")

    raw_config: dict[str, Any] = {}
    if config_path is not None:
        with open(config_path) as f:
            try:
                raw_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Cannot parse {config_path}: {e}") from e
        if not isinstance(raw_config, dict):
            raise ConfigError(f"{config_path} must contain a mapping")

    config = build_config(raw_config, overrides=overrides, environ=environ)
    config.config_path = config_path
    return config


def create_default_config(profile: str = "full") -> dict[str, Any]:
    """Create a default config dict for a new working directory."""
    defaults: dict[str, Any] = {
        "profile": profile,
        "catalog_base_url": "https://ws.api.video",
        "output_dir": "output",
        "temp_dir": "temp",
        "languages": ["ar", "en", "fr", "es", "it"],
        "whisper_bin": "./whisper.cpp/main",
        "whisper_model": "./whisper.cpp/models/ggml-base.bin",
        "upload_captions": False,
    }
    return merge_config(defaults, load_profile(profile))


def write_config(config: dict[str, Any], path: Path) -> None:
    """Write configuration to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)
