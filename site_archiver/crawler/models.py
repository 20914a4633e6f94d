"""Data models for the crawl-and-archive engine."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from site_archiver.crawler.errors import RequestInvalid
from site_archiver.crawler.urls import is_web_url, normalize_url

_HEADER_NAME = re.compile(r"^[!#$%&'*+.^_`|~0-9A-Za-z-]+$")


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

class CrawlMode(str, Enum):
    """How far a run expands beyond its seed pages."""

    HTML_ONLY = "html-only"
    DIRECT_ASSETS = "html+direct-assets"
    FULL_RECURSIVE = "full-recursive"

    @classmethod
    def from_option(cls, option: str) -> "CrawlMode":
        """Map a form option (``html`` | ``assets`` | ``full``) or a mode value."""
        aliases = {
            "html": cls.HTML_ONLY,
            "assets": cls.DIRECT_ASSETS,
            "full": cls.FULL_RECURSIVE,
        }
        key = (option or "").strip().lower()
        if key in aliases:
            return aliases[key]
        try:
            return cls(key)
        except ValueError:
            raise RequestInvalid(f"Unknown crawl option: {option!r}") from None


def parse_custom_header(raw: str | None) -> tuple[tuple[str, str], ...]:
    """Parse ``Name: value`` lines into header pairs.

    Blank lines are ignored.  A line without a colon, with an invalid
    header name or with a non-ASCII value raises :class:`RequestInvalid`.
    """
    if not raw:
        return ()
    pairs: list[tuple[str, str]] = []
    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        name, sep, value = line.partition(":")
        name = name.strip()
        if not sep or not _HEADER_NAME.match(name):
            raise RequestInvalid(f"Malformed custom header line: {line!r}")
        value = value.strip()
        if not value.isascii() or not value.isprintable():
            raise RequestInvalid(f"Custom header {name} must be printable ASCII")
        pairs.append((name, value))
    return tuple(pairs)


@dataclass(frozen=True)
class CrawlRequest:
    """An immutable, validated request for one archive run."""

    seeds: tuple[str, ...]
    mode: CrawlMode = CrawlMode.DIRECT_ASSETS
    headers: tuple[tuple[str, str], ...] = ()

    @classmethod
    def create(
        cls,
        urls: Iterable[str],
        mode: CrawlMode | str = CrawlMode.DIRECT_ASSETS,
        custom_header: str | None = None,
        *,
        max_seeds: int = 5,
    ) -> "CrawlRequest":
        """Validate raw caller input and build a request.

        Raises:
            RequestInvalid: No seeds, too many seeds, a seed that is not an
                absolute http(s) URL, an unknown mode, or a malformed custom
                header.
        """
        seeds = list(urls or [])
        if not seeds:
            raise RequestInvalid("At least one URL is required.")
        if len(seeds) > max_seeds:
            raise RequestInvalid(
                f"Too many URLs in one request ({len(seeds)} > {max_seeds})."
            )
        normalized: list[str] = []
        for seed in seeds:
            if not isinstance(seed, str) or not is_web_url(seed):
                raise RequestInvalid(f"Invalid URL: {seed!r}")
            normalized.append(normalize_url(seed))

        if not isinstance(mode, CrawlMode):
            mode = CrawlMode.from_option(mode)

        return cls(
            seeds=tuple(normalized),
            mode=mode,
            headers=parse_custom_header(custom_header),
        )

    @property
    def header_dict(self) -> dict[str, str]:
        return dict(self.headers)


# ---------------------------------------------------------------------------
# Fetch outcomes
# ---------------------------------------------------------------------------

class FetchErrorKind(str, Enum):
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    HTTP_ERROR = "http-error"
    TOO_LARGE = "too-large"


@dataclass(frozen=True)
class FetchResult:
    """A successful (2xx) response with its full body."""

    url: str
    final_url: str
    status_code: int
    content_type: str
    body: bytes

    @property
    def is_html(self) -> bool:
        ctype = self.content_type.split(";", 1)[0].strip().lower()
        if ctype:
            return "html" in ctype
        return looks_like_html(self.body)


@dataclass(frozen=True)
class FetchError:
    """A classified fetch failure.  Never raised; returned by the fetcher."""

    url: str
    kind: FetchErrorKind
    detail: str = ""
    status_code: Optional[int] = None

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.kind.value} (HTTP {self.status_code})"
        if self.detail:
            return f"{self.kind.value} ({self.detail})"
        return self.kind.value


def looks_like_html(data: bytes) -> bool:
    head = data[:2048].lstrip().lower()
    return head.startswith(b"<") and (
        b"<html" in head or b"<!doctype html" in head or b"<head" in head
    )


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

class DenyReason(str, Enum):
    CEILING = "ceiling"
    DUPLICATE = "duplicate"
    CROSS_ORIGIN = "cross-origin"
    INLINE = "inline"
    EXCLUDED = "excluded"


@dataclass(frozen=True)
class Decision:
    """Outcome of a policy-gate admission check."""

    allowed: bool
    reason: Optional[DenyReason] = None
    path: Optional[str] = None

    @classmethod
    def allow(cls, path: str) -> "Decision":
        return cls(allowed=True, path=path)

    @classmethod
    def deny(cls, reason: DenyReason) -> "Decision":
        return cls(allowed=False, reason=reason)


@dataclass(frozen=True)
class Candidate:
    """An admitted URL waiting in the work queue.

    ``origin`` is the seed URL whose origin bounds this candidate's
    subtree; ``expand`` says whether references are extracted from the
    body when it turns out to be HTML.
    """

    url: str
    path: str
    origin: str
    expand: bool = False
    seed: bool = False


@dataclass(frozen=True)
class Extraction:
    """References found in one document, in discovery order.

    ``degraded`` carries the reason when the document could not be parsed
    at all; ``references`` is then empty.
    """

    references: list[str] = field(default_factory=list)
    degraded: Optional[str] = None


# ---------------------------------------------------------------------------
# Run metadata
# ---------------------------------------------------------------------------

@dataclass
class RunMetadata:
    """Counters reported alongside the archive stream."""

    run_id: str
    resources: int = 0
    log_lines: int = 0
    state: str = "idle"
    error: Optional[str] = None

    def as_comment(self) -> bytes:
        """Render the counters for the ZIP end-of-archive comment."""
        return f"resources={self.resources};log_lines={self.log_lines}".encode("ascii")
