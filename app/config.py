"""Configuration management for the referral service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import yaml


_DEVELOPMENT_ORIGINS = ("http://localhost:3000", "http://127.0.0.1:3000")


@dataclass(frozen=True)
class ValidationSettings:
    """Length limits applied to registration input."""

    min_name_length: int = 2
    max_name_length: int = 50
    min_email_length: int = 5
    max_email_length: int = 100
    referral_code_length: int = 6


@dataclass(frozen=True)
class PointsSettings:
    """Points awarded by the referral programme."""

    referral_bonus: int = 10
    initial_points: int = 0


@dataclass(frozen=True)
class ServerSettings:
    host: str = "localhost"
    port: int = 3000
    environment: str = "development"
    cors_origins: Tuple[str, ...] = _DEVELOPMENT_ORIGINS

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@dataclass(frozen=True)
class AppSettings:
    name: str = "Referral System"
    version: str = "1.0.0"
    description: str = "A referral system with points tracking"


@dataclass(frozen=True)
class Settings:
    """Aggregated configuration, fixed for the lifetime of the process."""

    server: ServerSettings = field(default_factory=ServerSettings)
    app: AppSettings = field(default_factory=AppSettings)
    validation: ValidationSettings = field(default_factory=ValidationSettings)
    points: PointsSettings = field(default_factory=PointsSettings)


def _integer_overrides(section: str, data: Mapping[str, object], allowed: Tuple[str, ...]) -> Dict[str, int]:
    unknown = set(data.keys()) - set(allowed)
    if unknown:
        raise ValueError(f"Unknown {section} configuration fields: {', '.join(sorted(unknown))}")

    overrides: Dict[str, int] = {}
    for key, value in data.items():
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Configuration field '{section}.{key}' must be an integer")
        overrides[key] = value
    return overrides


def _parse_origins(raw: Optional[str], environment: str) -> Tuple[str, ...]:
    if raw:
        origins = tuple(item.strip() for item in raw.split(",") if item.strip())
        if origins:
            return origins
    if environment == "production":
        return ()
    return _DEVELOPMENT_ORIGINS


def load_config_file(config_path: Path, settings: Settings) -> Settings:
    """Apply ``validation`` and ``points`` overrides from a YAML file."""
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping at the top level")

    validation_raw = raw.get("validation") or {}
    points_raw = raw.get("points") or {}
    if not isinstance(validation_raw, dict) or not isinstance(points_raw, dict):
        raise ValueError("The 'validation' and 'points' sections must be mappings")

    validation = replace(
        settings.validation,
        **_integer_overrides("validation", validation_raw, tuple(ValidationSettings.__dataclass_fields__)),
    )
    points = replace(
        settings.points,
        **_integer_overrides("points", points_raw, tuple(PointsSettings.__dataclass_fields__)),
    )
    return replace(settings, validation=validation, points=points)


def resolve_config_path(env_value: Optional[str]) -> Optional[Path]:
    """Resolve the optional YAML configuration file path."""
    if not env_value:
        return None
    return Path(env_value).expanduser().resolve(strict=False)


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from environment variables and the optional YAML file."""
    env = os.environ if environ is None else environ

    environment = env.get("REFERRAL_ENV", "development").strip() or "development"
    server = ServerSettings(
        host=env.get("REFERRAL_HOST", "localhost").strip() or "localhost",
        port=int(env.get("REFERRAL_PORT", "3000")),
        environment=environment,
        cors_origins=_parse_origins(env.get("REFERRAL_CORS_ORIGINS"), environment),
    )
    settings = Settings(server=server)

    config_path = resolve_config_path(env.get("REFERRAL_CONFIG"))
    if config_path is not None:
        settings = load_config_file(config_path, settings)
    return settings


__all__ = [
    "AppSettings",
    "PointsSettings",
    "ServerSettings",
    "Settings",
    "ValidationSettings",
    "load_config_file",
    "load_settings",
    "resolve_config_path",
]
