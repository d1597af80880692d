"""WebDAV upload backend."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote, urlsplit

import httpx

from cloud_vault.core.exceptions import TransferError
from cloud_vault.core.models import BackupArtifact, BackupStorageConfig, RemoteFileEntry, WebDAVConfig
from cloud_vault.uploaders.base import BaseUploader

_DAV = "{DAV:}"
_STREAM_BLOCK = 1024 * 1024
_PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop>'
    "<d:resourcetype/><d:getlastmodified/><d:getcontentlength/>"
    "</d:prop></d:propfind>"
)


class WebDAVClient:
    """Thin WebDAV verb layer over an :class:`httpx.Client`.

    Every method takes absolute URLs and raises :class:`TransferError` (with the
    HTTP status where there is one) on failure.
    """

    def __init__(self, client: httpx.Client) -> None:
        self._client = client

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    def close(self) -> None:
        self._client.close()

    def _send(self, method: str, url: str, ok: tuple[int, ...], **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransferError(f"{method} {url} failed: {exc}") from exc
        if response.status_code not in ok:
            raise TransferError(
                f"{method} {url} returned {response.status_code}",
                status_code=response.status_code,
            )
        return response

    def exists(self, url: str) -> bool:
        try:
            self._send("PROPFIND", url, (200, 207), headers={"Depth": "0"}, content=_PROPFIND_BODY)
        except TransferError as exc:
            if exc.status_code == 404:
                return False
            raise
        return True

    def mkcol(self, url: str) -> None:
        # 405: the collection already exists
        self._send("MKCOL", url, (201, 405))

    def put(self, url: str, data: Any, length: int | None = None) -> None:
        headers = {"Content-Type": "application/octet-stream"}
        if length is not None:
            headers["Content-Length"] = str(length)
        self._send("PUT", url, (200, 201, 204), content=data, headers=headers)

    def move(self, source: str, destination: str) -> None:
        self._send(
            "MOVE", source, (201, 204),
            headers={"Destination": destination, "Overwrite": "T"},
        )

    def delete(self, url: str) -> None:
        self._send("DELETE", url, (200, 204))

    def download(self, url: str, local_path: Path) -> None:
        try:
            with self._client.stream("GET", url) as response:
                if response.status_code != 200:
                    raise TransferError(
                        f"GET {url} returned {response.status_code}",
                        status_code=response.status_code,
                    )
                with open(local_path, "wb") as f:
                    for chunk in response.iter_bytes():
                        f.write(chunk)
        except httpx.HTTPError as exc:
            raise TransferError(f"GET {url} failed: {exc}") from exc

    def listdir(self, url: str) -> list[RemoteFileEntry]:
        """PROPFIND depth 1; the collection itself is left out."""
        response = self._send(
            "PROPFIND", url.rstrip("/") + "/", (207,),
            headers={"Depth": "1", "Content-Type": "application/xml"},
            content=_PROPFIND_BODY,
        )
        return parse_multistatus(response.content, urlsplit(url).path)


def _parse_http_date(value: str | None) -> datetime:
    """RFC 1123 dates from ``getlastmodified``; anything unreadable sorts first."""
    if not value:
        return datetime.fromtimestamp(0, UTC)
    try:
        stamp = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return datetime.fromtimestamp(0, UTC)
    # "-0000" parses naive
    if stamp.tzinfo is None:
        return stamp.replace(tzinfo=UTC)
    return stamp.astimezone(UTC)


def parse_multistatus(body: bytes, collection_path: str) -> list[RemoteFileEntry]:
    """Turn a PROPFIND multistatus document into entries."""
    try:
        root = ET.fromstring(body)
    except ET.ParseError as exc:
        raise TransferError(f"Malformed PROPFIND response: {exc}") from exc

    own_path = unquote(collection_path).rstrip("/")
    entries: list[RemoteFileEntry] = []
    for response in root.iter(f"{_DAV}response"):
        href = unquote(urlsplit(response.findtext(f"{_DAV}href", "")).path).rstrip("/")
        if not href or href == own_path:
            continue
        prop = response.find(f"{_DAV}propstat/{_DAV}prop")
        is_dir = prop is not None and prop.find(f"{_DAV}resourcetype/{_DAV}collection") is not None
        modified_text = prop.findtext(f"{_DAV}getlastmodified") if prop is not None else None
        size_text = prop.findtext(f"{_DAV}getcontentlength") if prop is not None else None
        entries.append(RemoteFileEntry(
            name=href.rsplit("/", 1)[-1],
            modified=_parse_http_date(modified_text),
            size=int(size_text) if size_text else 0,
            is_dir=is_dir,
        ))
    return entries


class WebDAVUploader(BaseUploader):
    """Upload backups to a WebDAV share using HTTP basic auth."""

    name = "WebDAV"
    id = "webdav"

    def __init__(
            self,
            config: WebDAVConfig,
            storage: BackupStorageConfig,
            *,
            client: httpx.Client | None = None,
            timeout: float = 120.0,
            **kwargs: Any,
    ) -> None:
        super().__init__(storage, **kwargs)
        self.config = config
        self.account_url = config.hostname.rstrip("/")
        password = config.password.get_secret_value() if config.password else ""
        self.dav = WebDAVClient(
            client or httpx.Client(auth=(config.username, password), timeout=timeout)
        )

    @property
    def is_authenticated(self) -> bool:
        return bool(self.account_url) and not self.dav.is_closed

    def close(self) -> None:
        self.dav.close()

    def url_for(self, remote_path: str) -> str:
        return f"{self.account_url}/{quote(remote_path)}" if remote_path else self.account_url

    # ────────────── Primitives ──────────────

    def _upload(self, artifact: BackupArtifact, remote_path: str) -> None:
        segments = remote_path.split("/")[:-1]
        for depth in range(1, len(segments) + 1):
            self.dav.mkcol(self.url_for("/".join(segments[:depth])))
        self._transfer(artifact, self.url_for(remote_path))

    def _transfer(self, artifact: BackupArtifact, target: str) -> None:
        """Move the file bytes to *target*. Folders already exist."""
        with open(artifact.path, "rb") as f:
            self.dav.put(target, iter(lambda: f.read(_STREAM_BLOCK), b""), length=artifact.size)

    def _delete(self, remote_path: str) -> None:
        self.dav.delete(self.url_for(remote_path))

    def _list_entries(self, remote_folder: str) -> list[RemoteFileEntry]:
        return self.dav.listdir(self.url_for(remote_folder))

    def _download(self, remote_path: str, local_path: Path) -> None:
        self.dav.download(self.url_for(remote_path), local_path)
