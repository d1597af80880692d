"""Run configured upload backends one after another and collect the outcome."""

from __future__ import annotations

import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

from cloud_vault.core.exceptions import ConfigError
from cloud_vault.core.models import (
    AppConfig,
    BackupArtifact,
    UploaderType,
    UploadReport,
    UploadResult,
)
from cloud_vault.logging import get_logger, log_failure
from cloud_vault.uploaders import BaseUploader, get_uploader

log = get_logger(__name__)

TEST_FILE_NAME = "cloud-vault-test.txt"
TEST_FILE_SIZE = 1024

UploaderFactory = Callable[..., BaseUploader]


class UploadOrchestrator:
    """Entry point for host code: upload an artifact to every enabled backend.

    Backends run sequentially. A failing backend is reported and skipped; the
    remaining ones still run. Nothing here raises for a backend failure.
    """

    def __init__(
            self,
            config: AppConfig,
            *,
            factory: UploaderFactory = get_uploader,
            **uploader_kwargs: Any,
    ) -> None:
        self.config = config
        self._factory = factory
        self._uploader_kwargs = uploader_kwargs

    @property
    def backends(self) -> list[UploaderType]:
        return self.config.enabled_backends

    def open(self, kind: UploaderType) -> BaseUploader:
        """Build one backend. The caller owns it and must close it."""
        return self._factory(kind, self.config, **self._uploader_kwargs)

    def upload(self, path: Path, category: str) -> UploadReport:
        """Upload *path* into *category* on every enabled backend."""
        artifact = BackupArtifact.from_path(path, category)
        report = UploadReport(artifact=str(artifact.path))
        log.info("backup_upload_start", file=artifact.name, size=artifact.size_human,
                 category=artifact.category,
                 backends=[b.value for b in self.backends])

        for kind in self._require_backends():
            report.results[kind.value] = self._run(
                kind, lambda uploader: uploader.upload_file(artifact, artifact.category),
            )

        self._log_report("backup_upload_finished", report)
        return report

    def test(self) -> UploadReport:
        """Check every enabled backend by uploading and deleting a small file."""
        with tempfile.TemporaryDirectory(prefix="cloud-vault-") as tmp:
            test_file = Path(tmp) / TEST_FILE_NAME
            test_file.write_bytes(b"cloud-vault connectivity test\n".ljust(TEST_FILE_SIZE, b"."))
            artifact = BackupArtifact.from_path(test_file)
            report = UploadReport(artifact=artifact.name)
            for kind in self._require_backends():
                report.results[kind.value] = self._run(kind, lambda uploader: uploader.test(artifact))

        self._log_report("backend_test_finished", report)
        return report

    def _require_backends(self) -> list[UploaderType]:
        if not self.backends:
            raise ConfigError("No upload backend is enabled in the configuration")
        return self.backends

    def _run(self, kind: UploaderType, action: Callable[[BaseUploader], UploadResult]) -> UploadResult:
        try:
            uploader = self.open(kind)
        except Exception as exc:
            log_failure(log, "backend_setup_failed", exc,
                        suppress_stack=self.config.advanced.suppress_errors, backend=kind.value)
            return UploadResult.failure(exc)

        try:
            if not uploader.is_authenticated:
                log.warning("backend_not_authenticated", backend=uploader.id, name=uploader.name)
                return UploadResult(
                    ok=False, error_kind="auth", message=f"{uploader.name} is not authenticated",
                )
            result = action(uploader)
            if result.ok and uploader.is_error_while_uploading:
                result.ok = False
                result.error_kind = result.error_kind or "unknown"
            return result
        finally:
            uploader.close()

    @staticmethod
    def _log_report(event: str, report: UploadReport) -> None:
        if report.success:
            log.info(event, artifact=report.artifact, backends=list(report.results))
        else:
            log.error(event, artifact=report.artifact, failed=report.failed_backends)
