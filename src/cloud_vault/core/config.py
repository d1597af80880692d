"""Configuration loading and management for cloud-vault.

Configuration sources (highest to lowest priority):
  1. CLI arguments (passed directly)
  2. Environment variables (CLOUD_VAULT_* prefix)
  3. Config file (~/.config/cloud-vault/config.toml)
  4. Defaults
"""

from __future__ import annotations

import contextlib
import enum
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

import tomli_w
from pydantic import SecretStr, ValidationError

from cloud_vault.core.exceptions import ConfigError
from cloud_vault.core.models import AppConfig, LogFormat

# ──────────────────── Paths ──────────────────────────────

_APP_NAME = "cloud-vault"


def _get_config_dir() -> Path:
    """Return the platform-appropriate config directory."""
    if sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    elif sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base / _APP_NAME


def _get_data_dir() -> Path:
    """Return the platform-appropriate data directory."""
    if sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    elif sys.platform == "win32":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    return base / _APP_NAME


CONFIG_DIR = _get_config_dir()
DATA_DIR = _get_data_dir()
CONFIG_FILE = CONFIG_DIR / "config.toml"
LOG_DIR = DATA_DIR / "logs"

# ──────────────────── Environment Loading ────────────────

_ENV_PREFIX = "CLOUD_VAULT_"

# section -> {env suffix: field}
_ENV_FIELDS: dict[str, dict[str, str]] = {
    "backup_storage": {
        "REMOTE_DIRECTORY": "remote_directory",
        "LOCAL_DIRECTORY": "local_directory",
        "KEEP_COUNT": "keep_count",
    },
    "dropbox": {
        "DROPBOX_ENABLED": "enabled",
        "DROPBOX_CLIENT_ID": "client_id",
        "DROPBOX_CLIENT_SECRET": "client_secret",
        "DROPBOX_REFRESH_TOKEN": "refresh_token",
    },
    "s3": {
        "S3_ENABLED": "enabled",
        "S3_BUCKET": "bucket",
        "S3_PREFIX": "prefix",
        "S3_REGION": "region",
        "S3_ENDPOINT_URL": "endpoint_url",
        "S3_ACCESS_KEY": "access_key",
        "S3_SECRET_KEY": "secret_key",
    },
    "ftp": {
        "FTP_ENABLED": "enabled",
        "FTP_HOSTNAME": "hostname",
        "FTP_PORT": "port",
        "FTP_SFTP": "sftp",
        "FTP_FTPS": "ftps",
        "FTP_USERNAME": "username",
        "FTP_PASSWORD": "password",
        "FTP_PUBLIC_KEY": "public_key",
        "FTP_PASSPHRASE": "passphrase",
        "FTP_BASE_DIRECTORY": "base_directory",
    },
    "webdav": {
        "WEBDAV_ENABLED": "enabled",
        "WEBDAV_HOSTNAME": "hostname",
        "WEBDAV_USERNAME": "username",
        "WEBDAV_PASSWORD": "password",
    },
    "nextcloud": {
        "NEXTCLOUD_ENABLED": "enabled",
        "NEXTCLOUD_HOSTNAME": "hostname",
        "NEXTCLOUD_USERNAME": "username",
        "NEXTCLOUD_PASSWORD": "password",
        "NEXTCLOUD_CHUNK_SIZE": "chunk_size",
    },
    "advanced": {
        "SUPPRESS_ERRORS": "suppress_errors",
    },
}


def _env(key: str, default: str | None = None) -> str | None:
    """Read an environment variable with the CLOUD_VAULT_ prefix."""
    return os.environ.get(f"{_ENV_PREFIX}{key}", default)


def _load_section_from_env(section: str) -> dict[str, Any]:
    """Collect overrides for one config section. Pydantic coerces the strings."""
    overrides: dict[str, Any] = {}
    for suffix, field in _ENV_FIELDS.get(section, {}).items():
        if (value := _env(suffix)) is not None:
            overrides[field] = value
    return overrides


def _load_logging_from_env() -> dict[str, Any]:
    """Load logging config overrides from environment."""
    overrides: dict[str, Any] = {}
    if ll := _env("LOG_LEVEL"):
        overrides["level"] = ll.upper()
    if lf := _env("LOG_FILE"):
        overrides["log_file"] = Path(lf)
    if fmt := _env("LOG_FORMAT"):
        overrides["format"] = LogFormat(fmt.lower())
    return overrides


# ──────────────────── TOML File Loading ──────────────────


def load_config_file(path: Path | None = None) -> dict[str, Any]:
    """Load and return the raw TOML config dict. Returns empty dict if file missing."""
    config_path = path or CONFIG_FILE
    if not config_path.exists():
        return {}
    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc


def save_config_file(config: AppConfig, path: Path | None = None) -> Path:
    """Save AppConfig to a TOML file."""
    config_path = path or CONFIG_FILE
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = _config_to_toml_dict(config)
    with open(config_path, "wb") as f:
        tomli_w.dump(data, f)

    # Restrict file permissions (Unix only)
    with contextlib.suppress(OSError):
        config_path.chmod(0o600)

    return config_path


def _plain(value: Any) -> Any:
    """Make a dumped model value TOML-serialisable."""
    if isinstance(value, SecretStr):
        return value.get_secret_value()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def _config_to_toml_dict(config: AppConfig) -> dict[str, Any]:
    """Convert an AppConfig to a TOML-serialisable dict."""
    data: dict[str, Any] = {}
    for section in AppConfig.model_fields:
        model = getattr(config, section)
        data[section] = _plain(model.model_dump(mode="python", exclude_none=True))
    return data


# ──────────────────── Main Loader ────────────────────────


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the full application config (file + env overrides)."""
    raw = load_config_file(config_path)

    sections: dict[str, Any] = {}
    for section in AppConfig.model_fields:
        data = dict(raw.get(section, {}))
        if section == "logging":
            data.update(_load_logging_from_env())
        else:
            data.update(_load_section_from_env(section))
        if data:
            sections[section] = data

    try:
        return AppConfig(**sections)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


def ensure_dirs() -> None:
    """Create required application directories if they don't exist."""
    for d in (CONFIG_DIR, DATA_DIR, LOG_DIR):
        d.mkdir(parents=True, exist_ok=True)
