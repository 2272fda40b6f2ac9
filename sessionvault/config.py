"""SessionVault configuration.

Module-level defaults come from environment variables; a persisted
``settings.json`` in the config directory can override the sync sources,
working directory, port and sync interval.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger("sessionvault.config")


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_list(name: str) -> list[str]:
    value = os.getenv(name)
    if not value:
        return []
    return [part.strip() for part in value.split(os.pathsep) if part.strip()]


# Source profile (read-only)
CLAUDE_DIR = Path(os.getenv("SESSIONVAULT_CLAUDE_DIR", str(Path.home() / ".claude"))).expanduser()
SOURCE_DIRS = [Path(p).expanduser() for p in _env_list("SESSIONVAULT_SOURCE_DIRS")] or [CLAUDE_DIR]
DETECT_WSL_SOURCES = _env_bool("SESSIONVAULT_DETECT_WSL", True)

# Working copy + settings
DATA_DIR = Path(
    os.getenv("SESSIONVAULT_DATA_DIR", str(Path.home() / ".local" / "share" / "sessionvault"))
).expanduser()
CONFIG_DIR = Path(
    os.getenv("SESSIONVAULT_CONFIG_DIR", str(Path.home() / ".config" / "sessionvault"))
).expanduser()
SETTINGS_FILE = CONFIG_DIR / "settings.json"

# Sync + parsing
SYNC_INTERVAL_SECONDS = _env_int("SESSIONVAULT_SYNC_INTERVAL_SECONDS", 300)
MIN_SYNC_INTERVAL_SECONDS = 10
SESSION_CACHE_SIZE = _env_int("SESSIONVAULT_SESSION_CACHE_SIZE", 50)
SYNC_ERROR_LIMIT = _env_int("SESSIONVAULT_SYNC_ERROR_LIMIT", 50)
STARTUP_SYNC_DELAY_SECONDS = _env_int("SESSIONVAULT_STARTUP_SYNC_DELAY_SECONDS", 0)

# Observability
OTEL_ENABLED = _env_bool("SESSIONVAULT_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("SESSIONVAULT_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("SESSIONVAULT_OTEL_SERVICE_NAME", "sessionvault")
PROM_PORT = _env_int("SESSIONVAULT_PROM_PORT", 0)

# Server settings
HOST = os.getenv("SESSIONVAULT_HOST", "127.0.0.1")
PORT = _env_int("SESSIONVAULT_PORT", 3838)

# CORS
FRONTEND_ORIGIN = os.getenv("SESSIONVAULT_FRONTEND_ORIGIN", "http://localhost:5173")


class AppSettings(BaseModel):
    """User-editable settings persisted in ``settings.json``."""

    sourceDirs: Optional[list[str]] = None
    dataDir: Optional[str] = None
    port: Optional[int] = None
    syncIntervalSeconds: Optional[int] = None


class SettingsValidation(BaseModel):
    valid: bool
    errors: dict[str, str] = Field(default_factory=dict)
    warnings: dict[str, str] = Field(default_factory=dict)


class RuntimeConfig(BaseModel):
    """Effective configuration consumed by the mirror, scanner and server."""

    sourceDirs: list[Path]
    dataDir: Path
    port: int
    syncIntervalSeconds: int
    sessionCacheSize: int = 50


def read_settings(path: Path | None = None) -> AppSettings:
    """Load the settings file. Missing or corrupt files yield empty settings."""
    settings_path = path or SETTINGS_FILE
    if not settings_path.exists():
        return AppSettings()
    try:
        data = json.loads(settings_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Failed to read settings file %s: %s", settings_path, e)
        return AppSettings()
    if not isinstance(data, dict):
        return AppSettings()
    try:
        return AppSettings.model_validate(data)
    except ValidationError as e:
        logger.warning("Ignoring invalid settings file %s: %s", settings_path, e)
        return AppSettings()


def write_settings(settings: AppSettings, path: Path | None = None) -> None:
    settings_path = path or SETTINGS_FILE
    settings_path.parent.mkdir(parents=True, exist_ok=True)
    payload = settings.model_dump(exclude_none=True)
    settings_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def validate_settings(settings: AppSettings) -> SettingsValidation:
    """Check settings before they are persisted."""
    errors: dict[str, str] = {}
    warnings: dict[str, str] = {}

    if settings.sourceDirs is not None:
        if not settings.sourceDirs:
            errors["sourceDirs"] = "At least one source directory is required"
        for raw in settings.sourceDirs:
            projects_dir = Path(raw).expanduser() / "projects"
            if not projects_dir.is_dir():
                errors["sourceDirs"] = f"{raw} is not a profile directory (missing projects/)"
                break
            if not any(projects_dir.iterdir()):
                warnings["sourceDirs"] = f"{raw}/projects exists but is empty"

    if settings.dataDir is not None:
        data_dir = Path(settings.dataDir).expanduser()
        probe = data_dir / ".sessionvault-write-test"
        try:
            data_dir.mkdir(parents=True, exist_ok=True)
            probe.write_text("", encoding="utf-8")
            probe.unlink()
        except OSError:
            errors["dataDir"] = "Directory is not writable"

    if settings.port is not None and not 1 <= settings.port <= 65535:
        errors["port"] = "Must be an integer between 1 and 65535"

    if settings.syncIntervalSeconds is not None and settings.syncIntervalSeconds < MIN_SYNC_INTERVAL_SECONDS:
        errors["syncIntervalSeconds"] = f"Must be at least {MIN_SYNC_INTERVAL_SECONDS} seconds"

    return SettingsValidation(valid=not errors, errors=errors, warnings=warnings)


def resolve_runtime_config(settings: AppSettings | None = None) -> RuntimeConfig:
    """Merge environment defaults with the persisted settings file."""
    from sessionvault.paths import detect_windows_claude_dirs

    settings = settings if settings is not None else read_settings()

    if settings.sourceDirs:
        source_dirs = [Path(p).expanduser() for p in settings.sourceDirs]
    else:
        source_dirs = list(SOURCE_DIRS)
        if DETECT_WSL_SOURCES:
            for extra in detect_windows_claude_dirs():
                if extra not in source_dirs:
                    source_dirs.append(extra)

    interval = settings.syncIntervalSeconds or SYNC_INTERVAL_SECONDS
    return RuntimeConfig(
        sourceDirs=source_dirs,
        dataDir=Path(settings.dataDir).expanduser() if settings.dataDir else DATA_DIR,
        port=settings.port or PORT,
        syncIntervalSeconds=max(MIN_SYNC_INTERVAL_SECONDS, interval),
        sessionCacheSize=SESSION_CACHE_SIZE,
    )
