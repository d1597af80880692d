"""Nextcloud upload backend: WebDAV plus chunked fragment uploads."""

from __future__ import annotations

from typing import Any

import httpx

from cloud_vault.core.exceptions import TransferError
from cloud_vault.core.models import BackupArtifact, BackupStorageConfig, NextcloudConfig
from cloud_vault.uploaders.chunked import FragmentUploadEngine, discover_staging_dir
from cloud_vault.uploaders.webdav import WebDAVUploader


class NextcloudUploader(WebDAVUploader):
    """Large files go through the server's upload staging area in fragments."""

    name = "Nextcloud"
    id = "nextcloud"

    def __init__(
            self,
            config: NextcloudConfig,
            storage: BackupStorageConfig,
            *,
            client: httpx.Client | None = None,
            **kwargs: Any,
    ) -> None:
        super().__init__(config, storage, client=client, **kwargs)
        self.chunk_size = config.chunk_size
        try:
            self.staging_dir = discover_staging_dir(self.dav.exists, self.account_url, config.username)
        except TransferError as exc:
            self.log.warning("staging_discovery_failed", error=str(exc))
            self.staging_dir = None
        self.log.debug("staging_dir", staging=self.staging_dir)

    def _transfer(self, artifact: BackupArtifact, target: str) -> None:
        if self.staging_dir is None or artifact.size <= self.chunk_size:
            super()._transfer(artifact, target)
            return

        engine = FragmentUploadEngine(
            self.dav, self.staging_dir, self.chunk_size, sleep=self._sleep,
        )
        with open(artifact.path, "rb") as f:
            engine.upload(f, artifact.size, target)
