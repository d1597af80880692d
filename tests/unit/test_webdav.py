"""Tests for the WebDAV and Nextcloud backends against a mocked server."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from urllib.parse import unquote, urlsplit

import httpx
import pytest

from cloud_vault.core.exceptions import TransferError
from cloud_vault.core.models import (
    BackupArtifact,
    BackupStorageConfig,
    NextcloudConfig,
    WebDAVConfig,
)
from cloud_vault.uploaders.nextcloud import NextcloudUploader
from cloud_vault.uploaders.webdav import WebDAVUploader, parse_multistatus

ACCOUNT = "https://cloud.example.com/remote.php/dav/files/alice"
STAGING = "https://cloud.example.com/remote.php/dav/uploads/alice"

MULTISTATUS = b"""<?xml version="1.0"?>
<d:multistatus xmlns:d="DAV:">
  <d:response>
    <d:href>/remote.php/dav/files/alice/backups/site/</d:href>
    <d:propstat><d:prop><d:resourcetype><d:collection/></d:resourcetype></d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>/remote.php/dav/files/alice/backups/site/old%20one.zip</d:href>
    <d:propstat><d:prop>
      <d:resourcetype/>
      <d:getlastmodified>Mon, 01 Jan 2024 10:00:00 GMT</d:getlastmodified>
      <d:getcontentlength>1234</d:getcontentlength>
    </d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>/remote.php/dav/files/alice/backups/site/nested/</d:href>
    <d:propstat><d:prop><d:resourcetype><d:collection/></d:resourcetype></d:prop></d:propstat>
  </d:response>
</d:multistatus>"""

NESTED = b"""<?xml version="1.0"?>
<d:multistatus xmlns:d="DAV:">
  <d:response>
    <d:href>/remote.php/dav/files/alice/backups/site/nested/</d:href>
    <d:propstat><d:prop><d:resourcetype><d:collection/></d:resourcetype></d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>/remote.php/dav/files/alice/backups/site/nested/inner.zip</d:href>
    <d:propstat><d:prop><d:resourcetype/></d:prop></d:propstat>
  </d:response>
</d:multistatus>"""


MIXED_DATES = b"""<?xml version="1.0"?>
<d:multistatus xmlns:d="DAV:">
  <d:response>
    <d:href>/remote.php/dav/files/alice/backups/site/</d:href>
    <d:propstat><d:prop><d:resourcetype><d:collection/></d:resourcetype></d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>/remote.php/dav/files/alice/backups/site/old%20one.zip</d:href>
    <d:propstat><d:prop>
      <d:resourcetype/>
      <d:getlastmodified>Mon, 01 Jan 2024 10:00:00 -0000</d:getlastmodified>
    </d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>/remote.php/dav/files/alice/backups/site/undated.zip</d:href>
    <d:propstat><d:prop><d:resourcetype/></d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>/remote.php/dav/files/alice/backups/site/iso.zip</d:href>
    <d:propstat><d:prop>
      <d:resourcetype/>
      <d:getlastmodified>2024-03-01T10:00:00Z</d:getlastmodified>
    </d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>/remote.php/dav/files/alice/backups/site/new.zip</d:href>
    <d:propstat><d:prop>
      <d:resourcetype/>
      <d:getlastmodified>Wed, 01 May 2024 10:00:00 GMT</d:getlastmodified>
    </d:prop></d:propstat>
  </d:response>
</d:multistatus>"""


class FakeDav:
    """Records every request; answers from a small in-memory tree."""

    def __init__(self, *, staging: bool = True) -> None:
        self.staging = staging
        self.requests: list[tuple[str, str]] = []
        self.raw_paths: list[str] = []
        self.bodies: dict[str, bytes] = {}
        self.collections: set[str] = set()
        self.put_status = 201
        self.site_listing = MULTISTATUS

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = unquote(urlsplit(str(request.url)).path)
        self.requests.append((request.method, path))
        self.raw_paths.append(request.url.raw_path.decode())

        if request.method == "PROPFIND":
            if path.rstrip("/") == urlsplit(STAGING).path:
                return httpx.Response(207 if self.staging else 404, content=b"<d:multistatus xmlns:d='DAV:'/>")
            if request.headers.get("Depth") == "1" and path.rstrip("/").endswith("/backups/site"):
                return httpx.Response(207, content=self.site_listing)
            if request.headers.get("Depth") == "1" and path.rstrip("/").endswith("/nested"):
                return httpx.Response(207, content=NESTED)
            return httpx.Response(404)
        if request.method == "MKCOL":
            if path in self.collections:
                return httpx.Response(405)
            self.collections.add(path)
            return httpx.Response(201)
        if request.method == "PUT":
            self.bodies[path] = request.read()
            return httpx.Response(self.put_status)
        if request.method == "MOVE":
            return httpx.Response(201)
        if request.method == "DELETE":
            return httpx.Response(204)
        if request.method == "GET":
            return httpx.Response(200, content=b"downloaded")
        return httpx.Response(405)

    def methods(self) -> list[str]:
        return [m for m, _ in self.requests]


@pytest.fixture()
def dav() -> FakeDav:
    return FakeDav()


def _client(dav: FakeDav) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(dav.handler))


class TestParseMultistatus:
    def test_skips_collection_itself(self) -> None:
        entries = parse_multistatus(MULTISTATUS, "/remote.php/dav/files/alice/backups/site")
        assert [e.name for e in entries] == ["old one.zip", "nested"]

    def test_properties(self) -> None:
        file_entry, folder = parse_multistatus(MULTISTATUS, "/remote.php/dav/files/alice/backups/site")
        assert file_entry.size == 1234
        assert file_entry.modified.year == 2024
        assert file_entry.modified.tzinfo is not None
        assert not file_entry.is_dir
        assert folder.is_dir

    def test_mixed_date_formats_are_all_utc(self) -> None:
        entries = parse_multistatus(MIXED_DATES, "/remote.php/dav/files/alice/backups/site")
        stamps = {e.name: e.modified for e in entries}

        assert all(s.utcoffset() == timedelta(0) for s in stamps.values())
        assert stamps["old one.zip"] == datetime(2024, 1, 1, 10, tzinfo=UTC)
        assert stamps["undated.zip"] == stamps["iso.zip"] == datetime.fromtimestamp(0, UTC)
        assert sorted(stamps, key=stamps.get)[-1] == "new.zip"

    def test_malformed(self) -> None:
        with pytest.raises(TransferError, match="Malformed"):
            parse_multistatus(b"<not-xml", "/")


class TestWebDAVUploader:
    def _uploader(self, dav: FakeDav, storage: BackupStorageConfig) -> WebDAVUploader:
        config = WebDAVConfig(enabled=True, hostname=ACCOUNT + "/", username="alice", password="pw")
        return WebDAVUploader(config, storage, client=_client(dav), test_delay=0)

    def test_upload_creates_folders_then_puts(
            self, dav: FakeDav, storage: BackupStorageConfig, artifact: BackupArtifact,
    ) -> None:
        uploader = self._uploader(dav, storage)

        result = uploader.upload_file(artifact, "site")

        assert result.ok
        prefix = "/remote.php/dav/files/alice"
        assert dav.requests[:3] == [
            ("MKCOL", f"{prefix}/backups"),
            ("MKCOL", f"{prefix}/backups/site"),
            ("PUT", f"{prefix}/backups/site/{artifact.name}"),
        ]
        assert dav.bodies[f"{prefix}/backups/site/{artifact.name}"] == artifact.path.read_bytes()

    def test_existing_collection_is_fine(
            self, dav: FakeDav, storage: BackupStorageConfig, artifact: BackupArtifact,
    ) -> None:
        dav.collections.add("/remote.php/dav/files/alice/backups")
        assert self._uploader(dav, storage).upload_file(artifact, "site").ok

    def test_put_failure(
            self, dav: FakeDav, storage: BackupStorageConfig, artifact: BackupArtifact,
    ) -> None:
        dav.put_status = 507
        uploader = self._uploader(dav, storage)

        result = uploader.upload_file(artifact, "site")

        assert not result.ok
        assert result.error_kind == "transfer"
        assert uploader.is_error_while_uploading

    def test_prune_deletes_undated_entries_first(
            self, dav: FakeDav, storage: BackupStorageConfig, artifact: BackupArtifact,
    ) -> None:
        dav.site_listing = MIXED_DATES
        storage.keep_count = 2
        uploader = self._uploader(dav, storage)

        result = uploader.upload_file(artifact, "site")

        assert result.ok
        assert result.prune_error is None
        # undated and unparseable dates sort before the -0000 entry
        assert result.pruned == ["iso.zip", "undated.zip"]
        deletes = [p for (m, _), p in zip(dav.requests, dav.raw_paths) if m == "DELETE"]
        assert deletes == [
            "/remote.php/dav/files/alice/backups/site/iso.zip",
            "/remote.php/dav/files/alice/backups/site/undated.zip",
        ]

    def test_prune_delete_encodes_spaces(
            self, dav: FakeDav, storage: BackupStorageConfig, artifact: BackupArtifact,
    ) -> None:
        dav.site_listing = MIXED_DATES
        storage.keep_count = 1
        uploader = self._uploader(dav, storage)

        result = uploader.upload_file(artifact, "site")

        assert "old one.zip" in result.pruned
        assert "/remote.php/dav/files/alice/backups/site/old%20one.zip" in dav.raw_paths

    def test_list_files_recurses(self, dav: FakeDav, storage: BackupStorageConfig) -> None:
        uploader = self._uploader(dav, storage)
        assert uploader.list_files("site") == ["nested/inner.zip", "old one.zip"]

    def test_download(self, dav: FakeDav, storage: BackupStorageConfig) -> None:
        uploader = self._uploader(dav, storage)
        local = uploader.download_file("site/a.zip", "site")
        assert local is not None
        assert local.read_bytes() == b"downloaded"
        assert ("GET", "/remote.php/dav/files/alice/backups/site/a.zip") in dav.requests

    def test_closed_client_not_authenticated(self, dav: FakeDav, storage: BackupStorageConfig) -> None:
        uploader = self._uploader(dav, storage)
        assert uploader.is_authenticated
        uploader.close()
        assert not uploader.is_authenticated


class TestNextcloudUploader:
    def _uploader(self, dav: FakeDav, storage: BackupStorageConfig, no_sleep, chunk_size: int = 8) -> NextcloudUploader:
        config = NextcloudConfig(
            enabled=True, hostname=ACCOUNT, username="alice", password="pw", chunk_size=chunk_size,
        )
        return NextcloudUploader(config, storage, client=_client(dav), sleep=no_sleep)

    def test_discovers_staging(self, dav: FakeDav, storage: BackupStorageConfig, no_sleep) -> None:
        assert self._uploader(dav, storage, no_sleep).staging_dir == STAGING

    def test_no_staging_found(self, storage: BackupStorageConfig, no_sleep) -> None:
        dav = FakeDav(staging=False)
        assert self._uploader(dav, storage, no_sleep).staging_dir is None

    def test_large_file_uploaded_in_fragments(
            self, dav: FakeDav, storage: BackupStorageConfig, no_sleep, tmp_path: Path,
    ) -> None:
        big = tmp_path / "big.zip"
        big.write_bytes(b"0123456789abcdefghij")  # 20 bytes, 8-byte fragments
        uploader = self._uploader(dav, storage, no_sleep)

        result = uploader.upload_file(BackupArtifact.from_path(big), "site")

        assert result.ok
        staged_puts = [p for m, p in dav.requests if m == "PUT" and p.startswith(urlsplit(STAGING).path)]
        assert [p.rsplit("/", 1)[-1] for p in staged_puts] == [
            "00000000000000000000-00000000000000000007",
            "00000000000000000008-00000000000000000015",
            "00000000000000000016-00000000000000000019",
        ]
        assert dav.methods().count("MOVE") == 1
        assert b"".join(dav.bodies[p] for p in staged_puts) == big.read_bytes()

    def test_small_file_single_put(
            self, dav: FakeDav, storage: BackupStorageConfig, no_sleep, artifact: BackupArtifact,
    ) -> None:
        uploader = self._uploader(dav, storage, no_sleep, chunk_size=artifact.size)

        assert uploader.upload_file(artifact, "site").ok
        assert "MOVE" not in dav.methods()
        assert dav.methods().count("PUT") == 1
