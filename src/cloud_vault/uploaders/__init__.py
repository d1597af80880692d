"""Upload backend registry."""

from __future__ import annotations

from typing import Any

from cloud_vault.core.exceptions import UploaderNotFoundError
from cloud_vault.core.models import AppConfig, UploaderType
from cloud_vault.uploaders.base import BaseUploader


def get_uploader(kind: UploaderType, config: AppConfig, **kwargs: Any) -> BaseUploader:
    """Instantiate the backend for *kind* from the application config.

    Extra keyword arguments (``sleep``, ``client``, ...) are passed to the
    backend constructor.

    Raises:
        UploaderNotFoundError: If the backend type is not supported.
    """
    kwargs.setdefault("suppress_errors", config.advanced.suppress_errors)
    kwargs.setdefault("test_delay", config.advanced.test_delay_seconds)
    storage = config.backup_storage

    if kind == UploaderType.DROPBOX:
        from cloud_vault.uploaders.dropbox import DropboxUploader

        return DropboxUploader(config.dropbox, storage, **kwargs)

    if kind == UploaderType.S3:
        from cloud_vault.uploaders.s3 import S3Uploader

        return S3Uploader(config.s3, storage, **kwargs)

    if kind == UploaderType.FTP:
        if config.ftp.sftp:
            from cloud_vault.uploaders.sftp import SFTPUploader

            return SFTPUploader(config.ftp, storage, **kwargs)
        from cloud_vault.uploaders.ftp import FTPUploader

        return FTPUploader(config.ftp, storage, **kwargs)

    if kind == UploaderType.WEBDAV:
        from cloud_vault.uploaders.webdav import WebDAVUploader

        return WebDAVUploader(config.webdav, storage, **kwargs)

    if kind == UploaderType.NEXTCLOUD:
        from cloud_vault.uploaders.nextcloud import NextcloudUploader

        return NextcloudUploader(config.nextcloud, storage, **kwargs)

    raise UploaderNotFoundError(f"Unsupported upload backend: {kind}")


__all__ = ["BaseUploader", "get_uploader"]
