"""Configuration helpers bound to python-decouple."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from decouple import Config as DecoupleConfig, RepositoryEmpty, RepositoryEnv

DEFAULT_GITLAB_BASE_URL = "https://gitlab.com"


@dataclass(slots=True)
class GitlabSettings:
    """Connection details for the GitLab REST API."""

    base_url: str
    token: str | None
    per_page: int
    max_concurrency: int


@dataclass(slots=True)
class CacheSettings:
    """Where collected artifacts live.

    ``cache_directory`` is only an override. When it is ``None`` the cache
    root is derived from the working directory at the moment each operation
    runs, never at settings load time.
    """

    cache_directory: Path | None


@dataclass(slots=True)
class LoggingSettings:
    level: str


@dataclass(slots=True)
class Settings:
    env_path: str
    gitlab: GitlabSettings
    cache: CacheSettings
    logging: LoggingSettings


def load_config(env_path: str = ".env") -> DecoupleConfig:
    """Return a decouple config object anchored to the repository .env file.

    Process environment variables always win; a missing .env file simply
    leaves them as the only source.
    """

    if Path(env_path).is_file():
        return DecoupleConfig(RepositoryEnv(env_path))
    return DecoupleConfig(RepositoryEmpty())


def _optional_path(value: str | None) -> Path | None:
    if not value:
        return None
    return Path(value)


def build_settings(env_path: str = ".env") -> Settings:
    """Read every setting from the environment (and .env when present)."""

    config = load_config(env_path)
    gitlab = GitlabSettings(
        base_url=config("GITLAB_BASE_URL", default=DEFAULT_GITLAB_BASE_URL).rstrip("/"),
        token=config("GITLAB_TOKEN", default=None),
        per_page=config("GITLAB_PER_PAGE", default=100, cast=int),
        max_concurrency=config("GITLAB_MAX_CONCURRENCY", default=4, cast=int),
    )
    cache = CacheSettings(
        cache_directory=_optional_path(config("J1_CACHE_DIRECTORY", default=None)),
    )
    logging_settings = LoggingSettings(level=config("LOG_LEVEL", default="INFO").upper())
    return Settings(env_path=env_path, gitlab=gitlab, cache=cache, logging=logging_settings)


_SETTINGS: Settings | None = None


def get_settings(env_path: str = ".env") -> Settings:
    """Return the process-wide settings, loading them on first use."""

    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = build_settings(env_path)
    return _SETTINGS


def reset_settings() -> None:
    """Drop cached settings so the next ``get_settings`` call reloads them."""

    global _SETTINGS
    _SETTINGS = None
