from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError

__version__ = "0.1.0"

DEFAULT_ENV_FILENAME = ".env"
DEFAULT_MODPACK_SOURCE = "Wynncraft-Overhaul/majestic-overhaul/"
DEFAULT_LAUNCHER = "vanilla"
DEFAULT_USER_AGENT = f"packsync/{__version__}"
DEFAULT_CONCURRENCY = 14
DEFAULT_CACHE_SIZE = 100
DEFAULT_REQUEST_TIMEOUT = 30.0

USER_CONFIG_DIR = Path.home() / ".config" / "packsync"
USER_CONFIG_FILENAME = "config.json"
USER_CONFIG_PATH = USER_CONFIG_DIR / USER_CONFIG_FILENAME
DEFAULT_LOG_FILE = USER_CONFIG_DIR / "packsync.log"


def normalize_source(value: str) -> str:
    """GitHub sources are ``owner/repo/`` with a trailing slash, as URLs are built by concatenation."""
    value = value.strip().strip("/")
    if value.count("/") != 1:
        raise ConfigError(f"Modpack source '{value}' must look like 'owner/repo'.")
    return f"{value}/"


class UserConfig(BaseModel):
    launcher: str = DEFAULT_LAUNCHER
    modpack_source: Optional[str] = None


class EnvSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PACKSYNC_", extra="ignore")

    modpack_source: Optional[str] = None
    launcher: Optional[str] = None
    github_token: Optional[str] = None
    user_agent: Optional[str] = None
    concurrency: Optional[int] = None
    cache_size: Optional[int] = None
    request_timeout: Optional[float] = None
    minecraft_dir: Optional[Path] = None
    multimc_dir: Optional[Path] = None
    log_file: Optional[Path] = None


class InstallerConfig(BaseModel):
    modpack_source: str = DEFAULT_MODPACK_SOURCE
    launcher: str = DEFAULT_LAUNCHER
    github_token: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    concurrency: int = Field(default=DEFAULT_CONCURRENCY, ge=1)
    cache_size: int = Field(default=DEFAULT_CACHE_SIZE, ge=1)
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)
    minecraft_dir: Optional[Path] = None
    multimc_dir: Optional[Path] = None
    log_file: Path = DEFAULT_LOG_FILE

    @field_validator("modpack_source")
    @classmethod
    def _normalize_source(cls, value: str) -> str:
        return normalize_source(value)


def load_user_config() -> UserConfig:
    if not USER_CONFIG_PATH.exists():
        return UserConfig()
    try:
        data = json.loads(USER_CONFIG_PATH.read_text())
    except json.JSONDecodeError as exc:  # pragma: no cover - config errors are user-facing
        raise ConfigError(f"Invalid JSON in {USER_CONFIG_PATH}: {exc}") from exc
    return UserConfig(**data)


def save_user_config(cfg: UserConfig) -> Path:
    USER_CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    USER_CONFIG_PATH.write_text(cfg.model_dump_json(indent=2, exclude_none=True))
    return USER_CONFIG_PATH


def _expand(path: Optional[Path]) -> Optional[Path]:
    return Path(path).expanduser().resolve() if path is not None else None


def load_config(env_file: Path | None = None) -> InstallerConfig:
    """Load configuration from env + the user config file."""

    user_cfg = load_user_config()
    env_path = env_file or Path.cwd() / DEFAULT_ENV_FILENAME
    env_settings = EnvSettings(
        _env_file=env_path if env_path.exists() else None,
    )

    values = {
        "modpack_source": env_settings.modpack_source or user_cfg.modpack_source or DEFAULT_MODPACK_SOURCE,
        "launcher": env_settings.launcher or user_cfg.launcher or DEFAULT_LAUNCHER,
        "github_token": env_settings.github_token,
        "user_agent": env_settings.user_agent or DEFAULT_USER_AGENT,
        "concurrency": env_settings.concurrency or DEFAULT_CONCURRENCY,
        "cache_size": env_settings.cache_size or DEFAULT_CACHE_SIZE,
        "request_timeout": env_settings.request_timeout or DEFAULT_REQUEST_TIMEOUT,
        "minecraft_dir": _expand(env_settings.minecraft_dir),
        "multimc_dir": _expand(env_settings.multimc_dir),
        "log_file": _expand(env_settings.log_file) or DEFAULT_LOG_FILE,
    }
    try:
        return InstallerConfig(**values)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
