"""Streaming ZIP archive writer and archive-path derivation.

The writer wraps :class:`zipfile.ZipFile` around an unseekable sink, which
makes ``zipfile`` emit each entry with a trailing data descriptor.  Every
``append`` therefore produces the entry's bytes immediately; they are
drained and handed to the output pipe while the crawl continues.  Nothing
is rewritten after the fact, so the finished archive never has to be held
in memory as a whole.
"""

from __future__ import annotations

import hashlib
import io
import re
import time
import zipfile
from urllib.parse import unquote, urlsplit

from site_archiver.config import settings
from site_archiver.crawler.errors import ArchiveFault, PathCollision
from site_archiver.crawler.urls import netloc_of

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._\-]")


# ---------------------------------------------------------------------------
# Path derivation
# ---------------------------------------------------------------------------

def sanitize_path(path: str) -> str:
    """Strip traversal segments and replace characters outside ``[A-Za-z0-9._-/]``.

    Backslashes count as separators; empty, ``.`` and ``..`` segments are
    dropped, so the result is always a relative path inside the archive.
    """
    segments = path.replace("\\", "/").split("/")
    cleaned = [
        _UNSAFE_CHARS.sub("_", segment)
        for segment in segments
        if segment not in ("", ".", "..")
    ]
    return "/".join(cleaned)


def _with_query_suffix(path: str, query: str) -> str:
    digest = hashlib.sha1(query.encode("utf-8")).hexdigest()[:10]
    head, _, name = path.rpartition("/")
    stem, dot, ext = name.rpartition(".")
    if not dot or not stem:
        stem, ext = name, ""
    name = f"{stem}_q{digest}" + (f".{ext}" if ext else "")
    return f"{head}/{name}" if head else name


def archive_path(url: str) -> str:
    """Derive the archive entry path for *url*.

    ``https://example.com/`` becomes ``example.com/index.html`` and
    ``https://example.com/css/site.css`` becomes ``example.com/css/site.css``.
    Directory URLs get ``index.html`` appended and a query string is kept
    apart by a short digest suffix.  The same URL always yields the same
    path.
    """
    parts = urlsplit(url)
    path = unquote(parts.path) or "/"
    if path.endswith("/"):
        path += "index.html"
    if parts.query:
        path = _with_query_suffix(path, parts.query)
    return sanitize_path(f"{netloc_of(url)}/{path}")


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------

class _ChunkSink(io.RawIOBase):
    """Write-only, unseekable byte sink that collects output chunks."""

    def __init__(self) -> None:
        super().__init__()
        self._chunks: list[bytes] = []

    def writable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def write(self, data) -> int:  # type: ignore[override]
        chunk = bytes(data)
        if chunk:
            self._chunks.append(chunk)
        return len(chunk)

    def drain(self) -> list[bytes]:
        chunks, self._chunks = self._chunks, []
        return chunks


class ArchiveWriter:
    """Single-writer streaming ZIP archive.

    ``append`` and ``finalize`` return the bytes produced by that call; the
    caller is responsible for forwarding them, in order, to the output.
    Calls must be serialised: one writer, many producers.
    """

    def __init__(self, compression_level: int | None = None) -> None:
        level = compression_level if compression_level is not None else settings.compression_level
        self._sink = _ChunkSink()
        self._zip = zipfile.ZipFile(
            self._sink,
            mode="w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=level,
        )
        self._level = level
        self._seen: set[str] = set()
        self.closed = False
        self.finalized = False

    def append(self, path: str, data: bytes) -> list[bytes]:
        """Write one entry and return the archive bytes it produced.

        Raises:
            PathCollision: *path* was already written; the entry is rejected.
            ArchiveFault: the archive is closed or the write failed.
        """
        if self.closed:
            raise ArchiveFault(f"Archive is closed; cannot append {path}")
        if not path:
            raise ArchiveFault("Archive entry path is empty")
        if path in self._seen:
            raise PathCollision(path)

        info = zipfile.ZipInfo(path, date_time=time.localtime()[:6])
        info.compress_type = zipfile.ZIP_DEFLATED
        info.external_attr = 0o644 << 16
        try:
            self._zip.writestr(info, data, compresslevel=self._level)
        except (OSError, ValueError, zipfile.LargeZipFile) as exc:
            self.abort()
            raise ArchiveFault(f"Could not write {path}: {exc}") from exc

        self._seen.add(path)
        return self._sink.drain()

    def finalize(self, comment: bytes = b"") -> list[bytes]:
        """Write the central directory and return the trailing bytes."""
        if self.closed:
            raise ArchiveFault("Archive is already closed")
        self._zip.comment = comment
        try:
            self._zip.close()
        except (OSError, ValueError) as exc:
            self.closed = True
            raise ArchiveFault(f"Could not finalize archive: {exc}") from exc
        self.closed = True
        self.finalized = True
        return self._sink.drain()

    def abort(self) -> None:
        """Discard the archive without writing its central directory."""
        self.closed = True
        # Without a file object ZipFile.__del__ has no central directory to write.
        self._zip.fp = None
        self._sink.drain()
        self._sink.close()
