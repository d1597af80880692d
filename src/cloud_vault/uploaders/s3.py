"""S3-compatible object store upload backend with multipart support."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from cloud_vault.core.exceptions import ConfigError, TransferError
from cloud_vault.core.models import BackupArtifact, BackupStorageConfig, RemoteFileEntry, S3Config
from cloud_vault.logging import get_logger
from cloud_vault.uploaders.base import BaseUploader

log = get_logger(__name__)

# Multipart upload configuration
_MULTIPART_THRESHOLD = 100 * 1024 * 1024  # 100 MB
_MULTIPART_CHUNKSIZE = 50 * 1024 * 1024  # 50 MB
_EPOCH = datetime.fromtimestamp(0, UTC)


class S3Uploader(BaseUploader):
    """Upload backups to an S3 bucket under ``prefix/remote_directory``.

    Parts of a multipart upload are sent one at a time.
    """

    name = "S3"
    id = "s3"

    def __init__(
            self,
            config: S3Config,
            storage: BackupStorageConfig,
            *,
            client: Any = None,
            **kwargs: Any,
    ) -> None:
        super().__init__(storage, **kwargs)
        self.config = config
        self.prefix = config.prefix.strip("/")
        self._client = client
        self._transfer_config = TransferConfig(
            multipart_threshold=_MULTIPART_THRESHOLD,
            multipart_chunksize=_MULTIPART_CHUNKSIZE,
            max_concurrency=1,
            use_threads=False,
        )
        if self._client is None:
            with self._guard("connect", bucket=config.bucket):
                self._client = self._make_client()

    def _make_client(self) -> Any:
        if not self.config.bucket:
            raise ConfigError("S3 bucket name is required (s3.bucket or CLOUD_VAULT_S3_BUCKET)")

        boto_config = BotoConfig(
            region_name=self.config.region,
            retries={"max_attempts": 3, "mode": "adaptive"},
        )
        client_kwargs: dict[str, Any] = {"config": boto_config}
        if self.config.endpoint_url:
            client_kwargs["endpoint_url"] = self.config.endpoint_url
        if self.config.access_key and self.config.secret_key:
            client_kwargs["aws_access_key_id"] = self.config.access_key
            client_kwargs["aws_secret_access_key"] = self.config.secret_key.get_secret_value()
        return boto3.client("s3", **client_kwargs)

    @property
    def is_authenticated(self) -> bool:
        return self._client is not None

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _key(self, remote_path: str) -> str:
        """Prepend the configured prefix to a key."""
        return f"{self.prefix}/{remote_path}" if self.prefix else remote_path

    # ────────────── Primitives ──────────────

    def _upload(self, artifact: BackupArtifact, remote_path: str) -> None:
        key = self._key(remote_path)
        try:
            self._client.upload_file(
                str(artifact.path),
                self.config.bucket,
                key,
                ExtraArgs={"ServerSideEncryption": "AES256"},
                Config=self._transfer_config,
                Callback=_ProgressCallback(artifact.size, key),
            )
        except (ClientError, BotoCoreError) as exc:
            raise TransferError(f"S3 upload failed: {exc}") from exc

    def _delete(self, remote_path: str) -> None:
        try:
            self._client.delete_object(Bucket=self.config.bucket, Key=self._key(remote_path))
        except (ClientError, BotoCoreError) as exc:
            raise TransferError(f"Failed to delete S3 object: {exc}") from exc

    def _list_entries(self, remote_folder: str) -> list[RemoteFileEntry]:
        key = self._key(remote_folder).rstrip("/")
        prefix = f"{key}/" if key else ""
        entries: list[RemoteFileEntry] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.config.bucket, Prefix=prefix, Delimiter="/"):
                for obj in page.get("Contents", []):
                    name = obj["Key"][len(prefix):]
                    if not name:
                        continue
                    entries.append(RemoteFileEntry(
                        name=name,
                        modified=obj["LastModified"],
                        size=obj["Size"],
                    ))
                for common in page.get("CommonPrefixes", []):
                    entries.append(RemoteFileEntry(
                        name=common["Prefix"][len(prefix):].rstrip("/"),
                        modified=_EPOCH,
                        is_dir=True,
                    ))
        except (ClientError, BotoCoreError) as exc:
            raise TransferError(f"Failed to list S3 objects: {exc}") from exc
        return entries

    def _download(self, remote_path: str, local_path: Path) -> None:
        try:
            self._client.download_file(
                self.config.bucket,
                self._key(remote_path),
                str(local_path),
                Config=self._transfer_config,
            )
        except (ClientError, BotoCoreError) as exc:
            raise TransferError(f"S3 download failed: {exc}") from exc


class _ProgressCallback:
    """Callback for tracking S3 upload progress."""

    def __init__(self, total_size: int, key: str) -> None:
        self._total = total_size
        self._key = key
        self._uploaded = 0
        self._last_pct = -1

    def __call__(self, bytes_transferred: int) -> None:
        self._uploaded += bytes_transferred
        if self._total > 0:
            pct = int(self._uploaded * 100 / self._total)
            # Log every 10% to avoid flood
            if pct >= self._last_pct + 10:
                self._last_pct = pct
                log.debug("s3_upload_progress", key=self._key, percent=pct)
