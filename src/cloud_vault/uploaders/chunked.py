"""Chunked transfer engines for large uploads.

Two protocol shapes are supported:

* session based (start / append / finish), where every call after the first
  references a provider-issued session id and the cumulative byte offset;
* fragment assembly, where byte ranges are uploaded as separately named objects
  into a staging directory and merged by moving an assembly marker.

Chunks are always sent strictly in increasing offset order.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable, Iterable
from typing import BinaryIO, Protocol
from urllib.parse import urlsplit

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from cloud_vault.core.exceptions import TransferError
from cloud_vault.core.models import UploadSession
from cloud_vault.logging import get_logger

log = get_logger(__name__)

FRAGMENT_MAX_ATTEMPTS = 10
ASSEMBLY_MARKER = ".file"


def read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read exactly *size* bytes, or raise if the stream ends early."""
    buf = bytearray()
    while len(buf) < size:
        data = stream.read(size - len(buf))
        if not data:
            raise TransferError(f"Local file ended after {len(buf)} of {size} expected bytes")
        buf.extend(data)
    return bytes(buf)


# ──────────────────── Session uploads ────────────────────


class SessionTransport(Protocol):
    """Provider calls behind a start/append/finish upload session."""

    def start(self, chunk: bytes) -> str:
        """Open a session with the first chunk and return its id."""

    def append(self, session: UploadSession, chunk: bytes) -> None:
        """Append *chunk* at ``session.offset``."""

    def finish(self, session: UploadSession, chunk: bytes) -> None:
        """Send the last chunk and commit the session to ``session.path``."""


class SessionUploadEngine:
    """Drive a start/append/finish session over a local stream."""

    def __init__(self, transport: SessionTransport, chunk_size: int) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.transport = transport
        self.chunk_size = chunk_size

    def upload(self, stream: BinaryIO, length: int, path: str) -> UploadSession:
        """Send *length* bytes from *stream* to *path*. Any failure aborts the transfer."""
        session = UploadSession(path=path, length=length, chunk_size=self.chunk_size)

        first = read_exact(stream, min(self.chunk_size, length))
        session.session_id = self.transport.start(first)
        if first:
            session.advance(len(first))
        log.debug("upload_session_started", path=path, session_id=session.session_id)

        while session.remaining > self.chunk_size:
            chunk = read_exact(stream, self.chunk_size)
            self.transport.append(session, chunk)
            session.advance(len(chunk))
            log.debug("upload_session_appended", path=path, offset=session.offset)

        last = read_exact(stream, session.remaining)
        self.transport.finish(session, last)
        if last:
            session.advance(len(last))
        log.debug("upload_session_finished", path=path, length=length)
        return session


# ──────────────────── Fragment uploads ───────────────────


def fragment_name(start: int, end: int) -> str:
    """Name a fragment by its inclusive byte range; sorts in byte order."""
    return f"{start:020d}-{end:020d}"


class FragmentTransport(Protocol):
    """Remote calls needed for fragment assembly."""

    def mkcol(self, url: str) -> None: ...

    def put(self, url: str, data: bytes) -> None: ...

    def move(self, source: str, destination: str) -> None: ...

    def delete(self, url: str) -> None: ...


def discover_staging_dir(
        exists: Callable[[str], bool],
        account_url: str,
        username: str,
) -> str | None:
    """Find the provider's upload staging directory, or ``None`` if there is none.

    Probes ``remote.php/dav/uploads/<user>``, then ``uploads/<user>`` at the
    host root, then ``uploads/<user>`` below each successive segment of the
    account URL path.
    """
    for candidate in _staging_candidates(account_url, username):
        if exists(candidate):
            return candidate
    return None


def _staging_candidates(account_url: str, username: str) -> Iterable[str]:
    parts = urlsplit(account_url)
    host = f"{parts.scheme}://{parts.netloc}"
    yield f"{host}/remote.php/dav/uploads/{username}"
    yield f"{host}/uploads/{username}"
    prefix = host
    for segment in (s for s in parts.path.split("/") if s):
        prefix = f"{prefix}/{segment}"
        yield f"{prefix}/uploads/{username}"


class FragmentUploadEngine:
    """Upload a stream as byte-range fragments and have the server assemble them."""

    def __init__(
            self,
            transport: FragmentTransport,
            staging_dir: str,
            chunk_size: int,
            *,
            max_attempts: int = FRAGMENT_MAX_ATTEMPTS,
            sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.transport = transport
        self.staging_dir = staging_dir.rstrip("/")
        self.chunk_size = chunk_size
        self.max_attempts = max_attempts
        self._sleep = sleep

    def upload(self, stream: BinaryIO, length: int, target: str) -> None:
        """Upload *length* bytes from *stream* and assemble them at *target*.

        The temporary staging directory is removed before any error propagates.
        """
        temp_dir = f"{self.staging_dir}/{uuid.uuid4()}"
        self.transport.mkcol(temp_dir)
        log.debug("fragment_upload_started", staging=temp_dir, target=target, size=length)

        try:
            pos = 0
            while pos < length:
                data = read_exact(stream, min(self.chunk_size, length - pos))
                self._put_fragment(f"{temp_dir}/{fragment_name(pos, pos + len(data) - 1)}", data)
                pos += len(data)

            try:
                self.transport.move(f"{temp_dir}/{ASSEMBLY_MARKER}", target)
            except TransferError as exc:
                if exc.status_code != 504:
                    raise
                # Gateway timeout: the server keeps assembling in the background.
                log.warning("fragment_assembly_timeout", target=target)
        except Exception:
            self._discard(temp_dir)
            raise

        log.debug("fragment_upload_complete", target=target, size=length)

    def _put_fragment(self, url: str, data: bytes) -> None:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=0, increment=1),
            retry=retry_if_exception_type(TransferError),
            before_sleep=_log_fragment_retry,
            sleep=self._sleep,
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                self.transport.put(url, data)

    def _discard(self, temp_dir: str) -> None:
        try:
            self.transport.delete(temp_dir)
        except TransferError as exc:
            log.warning("staging_cleanup_failed", staging=temp_dir, error=str(exc))


def _log_fragment_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    log.warning(
        "fragment_upload_retry",
        attempt=state.attempt_number,
        error=str(exc),
    )
