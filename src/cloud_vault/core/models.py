"""Pydantic models for cloud-vault configuration and transfer state."""

from __future__ import annotations

import enum
import re
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

# ──────────────────────── Enums ──────────────────────────


class UploaderType(enum.StrEnum):
    """Supported remote storage backends."""

    DROPBOX = "dropbox"
    S3 = "s3"
    FTP = "ftp"
    WEBDAV = "webdav"
    NEXTCLOUD = "nextcloud"


class LogFormat(enum.StrEnum):
    """Structured log output format."""

    CONSOLE = "console"
    JSON = "json"


# ──────────────────── Config Models ──────────────────────


class BackupStorageConfig(BaseModel):
    """Where backups live remotely and how many of them to keep."""

    remote_directory: str = "backups"
    local_directory: Path = Path(".")
    keep_count: int = 20
    backup_extensions: list[str] = Field(default_factory=lambda: [".zip"])

    @field_validator("keep_count")
    @classmethod
    def validate_keep_count(cls, v: int) -> int:
        if v < -1:
            msg = "keep_count must be -1 (keep everything) or a non-negative number"
            raise ValueError(msg)
        return v

    @property
    def retention(self) -> RetentionPolicy:
        return RetentionPolicy(keep_count=self.keep_count, extensions=self.backup_extensions)


class DropboxConfig(BaseModel):
    """Dropbox app credentials.

    ``client_id``, ``client_secret`` and ``refresh_token`` hold obfuscated values
    produced by :func:`cloud_vault.core.obfuscate.obfuscate`.
    """

    enabled: bool = False
    client_id: str = ""
    client_secret: SecretStr | None = None
    refresh_token: SecretStr | None = None
    chunk_size: int = 10 * 1024 * 1024
    chunk_threshold: int = 150_000_000


class S3Config(BaseModel):
    """S3-compatible object store settings."""

    enabled: bool = False
    bucket: str | None = None
    prefix: str = ""
    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key: str | None = None
    secret_key: SecretStr | None = None


class FTPConfig(BaseModel):
    """FTP, FTPS or SFTP server settings."""

    enabled: bool = False
    hostname: str = "localhost"
    port: int | None = None
    ftps: bool = False
    sftp: bool = False
    username: str = ""
    password: SecretStr | None = None
    public_key: Path | None = None
    passphrase: SecretStr | None = None
    base_directory: str = ""

    @model_validator(mode="after")
    def set_default_port(self) -> FTPConfig:
        if self.port is None:
            self.port = 22 if self.sftp else 21
        return self


class WebDAVConfig(BaseModel):
    """WebDAV account settings. ``hostname`` is the full account URL."""

    enabled: bool = False
    hostname: str = ""
    username: str = ""
    password: SecretStr | None = None


class NextcloudConfig(WebDAVConfig):
    """Nextcloud account settings (WebDAV plus chunked uploads)."""

    chunk_size: int = 20_000_000

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        if v <= 0:
            msg = "chunk_size must be positive"
            raise ValueError(msg)
        return v


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    log_file: Path | None = None
    format: LogFormat = LogFormat.CONSOLE


class AdvancedConfig(BaseModel):
    """Rarely changed knobs."""

    suppress_errors: bool = False
    test_delay_seconds: float = 5.0


class AppConfig(BaseModel):
    """Top-level application configuration."""

    backup_storage: BackupStorageConfig = BackupStorageConfig()
    dropbox: DropboxConfig = DropboxConfig()
    s3: S3Config = S3Config()
    ftp: FTPConfig = FTPConfig()
    webdav: WebDAVConfig = WebDAVConfig()
    nextcloud: NextcloudConfig = NextcloudConfig()
    logging: LoggingConfig = LoggingConfig()
    advanced: AdvancedConfig = AdvancedConfig()

    @property
    def enabled_backends(self) -> list[UploaderType]:
        """Backends switched on in config, in a stable order."""
        return [t for t in UploaderType if getattr(self, t.value).enabled]


# ──────────────────── Transfer Models ────────────────────

_ESCAPE_SEGMENT = re.compile(r"\.{1,2}/")


def sanitize_category(category: str) -> str:
    """Strip "./" and "../" segments so a category cannot escape the remote base."""
    return _ESCAPE_SEGMENT.sub("", category).strip("/")


class BackupArtifact(BaseModel):
    """A local file to transfer. Immutable for the duration of one upload."""

    model_config = ConfigDict(frozen=True)

    path: Path
    size: int
    category: str = ""

    @field_validator("category")
    @classmethod
    def strip_escape_segments(cls, v: str) -> str:
        return sanitize_category(v)

    @classmethod
    def from_path(cls, path: Path, category: str = "") -> BackupArtifact:
        resolved = path.expanduser().resolve()
        return cls(path=resolved, size=resolved.stat().st_size, category=category)

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def size_human(self) -> str:
        return _human_size(self.size)


class RemoteFileEntry(BaseModel):
    """One listed remote object."""

    model_config = ConfigDict(frozen=True)

    name: str
    modified: datetime
    size: int = 0
    is_dir: bool = False

    @property
    def sort_key(self) -> tuple[datetime, str]:
        return (self.modified, self.name)


class UploadSession(BaseModel):
    """Transient state of one chunked transfer. Never persisted."""

    session_id: str | None = None
    path: str
    length: int
    chunk_size: int
    offset: int = 0

    @property
    def remaining(self) -> int:
        return self.length - self.offset

    def advance(self, nbytes: int) -> None:
        if nbytes <= 0 or self.offset + nbytes > self.length:
            msg = f"Cannot advance offset {self.offset} by {nbytes} (length {self.length})"
            raise ValueError(msg)
        self.offset += nbytes


class RetentionPolicy(BaseModel):
    """How many backup artifacts to keep per category. ``-1`` keeps all."""

    model_config = ConfigDict(frozen=True)

    keep_count: int = -1
    extensions: list[str] = Field(default_factory=lambda: [".zip"])

    @property
    def retain_all(self) -> bool:
        return self.keep_count == -1

    def is_backup_artifact(self, name: str) -> bool:
        lowered = name.lower()
        return any(lowered.endswith(ext.lower()) for ext in self.extensions)


class UploadResult(BaseModel):
    """Outcome of a single uploader operation."""

    ok: bool = True
    error_kind: str | None = None
    message: str | None = None
    pruned: list[str] = Field(default_factory=list)
    prune_error: str | None = None

    @classmethod
    def failure(cls, exc: BaseException) -> UploadResult:
        return cls(ok=False, error_kind=getattr(exc, "kind", "unknown"), message=str(exc))


class UploadReport(BaseModel):
    """Aggregated outcome of an orchestrated run, keyed by backend id."""

    artifact: str
    results: dict[str, UploadResult] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=datetime.now)

    @property
    def success(self) -> bool:
        return bool(self.results) and all(r.ok for r in self.results.values())

    @property
    def failed_backends(self) -> list[str]:
        return [name for name, r in self.results.items() if not r.ok]


# ──────────────────── Helpers ────────────────────────────


def _human_size(nbytes: int) -> str:
    """Convert bytes to human-readable string."""
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if abs(nbytes) < 1024:
            return f"{nbytes:.1f} {unit}"
        nbytes /= 1024  # type: ignore[assignment]
    return f"{nbytes:.1f} PB"
