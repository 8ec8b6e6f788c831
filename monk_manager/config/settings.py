# monk_manager/config/settings.py
import json
import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type

import yaml
from pydantic import Field, ValidationError, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from monk_manager.exceptions.config import ConfigError, ConfigFileError
from monk_manager.utils.sensitive_str import SensitiveStr

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = {"anthropic", "openrouter", "mock"}
CONFIG_FILE_NAMES = ("monk.toml", "monk.json", "monk.yaml", "monk.yml")

# Config files group keys by concern; the settings model itself is flat.
CONFIG_SECTIONS = ("ai", "logging", "commands", "limits", "cache", "retry", "explain")

DEFAULT_SYSTEM_PROMPT = (
    "You are an AI programming assistant. "
    "You're helping the user with their code project."
)


class Settings(BaseSettings):
    # === Model ===
    provider: str = "anthropic"
    model_name: str = "claude-3-5-haiku-20241022"
    api_key: Optional[str] = Field(default=None, repr=False)
    # Provider-specific keys, used when no explicit api_key is given.
    anthropic_api_key: Optional[str] = Field(
        default=None, repr=False, validation_alias="ANTHROPIC_API_KEY"
    )
    openrouter_api_key: Optional[str] = Field(
        default=None, repr=False, validation_alias="OPENROUTER_API_KEY"
    )
    api_base_url: Optional[str] = None
    temperature: float = Field(default=0.7, ge=0.0, le=1.0)
    max_tokens: int = Field(default=1024, gt=0)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    # === Resilience ===
    request_timeout: float = Field(default=60.0, gt=0)
    rate_limit_per_second: float = Field(default=1.0, gt=0)
    rate_limit_burst: int = Field(default=5, gt=0)
    max_concurrency: int = Field(default=4, gt=0)
    admission_timeout: float = Field(default=30.0, gt=0)
    cache_capacity: int = Field(default=128, gt=0)
    cache_max_age: float = Field(default=3600.0, gt=0)
    retry_max_attempts: int = Field(default=3, gt=0)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=30.0, ge=0)
    retry_jitter: float = Field(default=0.25, ge=0)
    history_char_budget: int = Field(default=24000, gt=0)
    max_history_messages: Optional[int] = Field(default=None, gt=0)

    # === Commands ===
    default_language: str = "text"
    default_format: str = "markdown"
    max_context_lines: int = Field(default=10, ge=0)
    language_detection: bool = True

    # === Logging ===
    log_level: str = "WARNING"
    log_file: Optional[Path] = None

    # Not a setting: where the values came from.
    config_file_path: Optional[Path] = Field(default=None, exclude=True)

    # === Pydantic V2 Configuration ===
    model_config = SettingsConfigDict(
        env_prefix="MONK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
        protected_namespaces=("settings_",),
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # Environment beats the config file, which arrives as init kwargs.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    # === Model Validator ===

    @model_validator(mode="after")
    def validate_and_normalize(self) -> "Settings":
        self.provider = (self.provider or "anthropic").strip().lower()
        if self.provider not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Invalid provider value. Expected one of {sorted(SUPPORTED_PROVIDERS)}. "
                f"Got: {self.provider}"
            )

        if self.log_level.upper() not in logging.getLevelNamesMapping():
            raise ValueError(f"Invalid log level: {self.log_level}")
        self.log_level = self.log_level.upper()

        if self.default_format not in {"markdown", "plain", "json"}:
            raise ValueError(f"Unsupported output format: {self.default_format}")

        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError("retry_max_delay must not be smaller than retry_base_delay")

        return self

    def credentials(self) -> SensitiveStr:
        """
        The API key for the selected provider, masked in every string form.

        An explicit ``api_key`` (MONK_API_KEY, config file, command line)
        wins; otherwise only the key belonging to ``provider`` is used.
        """
        if self.api_key:
            return SensitiveStr(self.api_key)
        provider_keys = {
            "anthropic": self.anthropic_api_key,
            "openrouter": self.openrouter_api_key,
        }
        return SensitiveStr(provider_keys.get(self.provider))

    def require_credentials(self) -> SensitiveStr:
        """Return the API key or fail when a remote provider has none."""
        secret = self.credentials()
        if self.provider != "mock" and not secret.is_valid():
            env_name = "OPENROUTER_API_KEY" if self.provider == "openrouter" else "ANTHROPIC_API_KEY"
            raise ConfigError(
                f"AI API key is required for provider '{self.provider}'. Set {env_name}.",
                field_name="api_key",
            )
        return secret


def find_config_file(explicit: Optional[Path] = None) -> Optional[Path]:
    """
    Locate the configuration file.

    Priority order:
    1. Explicit path (command line)
    2. MONK_CONFIG environment variable
    3. monk.{toml,json,yaml,yml} in the current directory
    4. The same names under ~/.config/monk-manager/
    """
    if explicit is not None:
        if not explicit.exists():
            raise ConfigFileError(f"Config file not found: {explicit}", file_path=explicit)
        return explicit

    env_path = os.getenv("MONK_CONFIG")
    if env_path:
        path = Path(env_path).expanduser()
        if path.exists():
            return path
        logger.warning("MONK_CONFIG points to a missing file: %s", path)

    search_dirs = [Path.cwd(), Path.home() / ".config" / "monk-manager"]
    for directory in search_dirs:
        for name in CONFIG_FILE_NAMES:
            candidate = directory / name
            if candidate.exists():
                return candidate
    return None


def _read_config_file(path: Path) -> Dict[str, Any]:
    suffix = path.suffix.lower()
    try:
        if suffix == ".toml":
            with open(path, "rb") as f:
                data = tomllib.load(f)
        elif suffix == ".json":
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        elif suffix in (".yaml", ".yml"):
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        else:
            raise ConfigFileError(
                f"Unsupported configuration file format: {path.suffix}", file_path=path
            )
    except (OSError, tomllib.TOMLDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigFileError(
            f"Failed to parse config file {path}: {e}", file_path=path, original_error=e
        ) from e

    if not isinstance(data, dict):
        raise ConfigFileError(f"Config file {path} must contain a mapping", file_path=path)
    return data


def _flatten_sections(data: Dict[str, Any]) -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        if key in CONFIG_SECTIONS and isinstance(value, dict):
            for inner_key, inner_value in value.items():
                # [logging] level -> log_level, [logging] file -> log_file
                if key == "logging" and inner_key in ("level", "file"):
                    inner_key = f"log_{inner_key}"
                flat[inner_key] = inner_value
        else:
            flat[key] = value
    return flat


def load_settings(config_path: Optional[Path] = None, **overrides: Any) -> Settings:
    """Build validated settings from the config file, environment and overrides."""
    path = find_config_file(config_path)
    values: Dict[str, Any] = {}
    if path is not None:
        logger.debug("Loading configuration from: %s", path)
        values.update(_flatten_sections(_read_config_file(path)))

    try:
        settings = Settings(**values)
        overrides = {k: v for k, v in overrides.items() if v is not None}
        if overrides:
            # Command-line values win over both file and environment.
            settings = Settings.model_validate({**settings.model_dump(), **overrides})
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}", original_error=e) from e

    settings.config_file_path = path
    return settings
