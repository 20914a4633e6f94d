"""Reference extraction: turns an HTML document into candidate asset/link URLs."""

from __future__ import annotations

import logging
from urllib.parse import urldefrag, urljoin

from bs4 import BeautifulSoup

from site_archiver.crawler.models import Extraction

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Reference categories, in the order their URLs are reported.
# Hyperlinks come last; they are how full-recursive runs find sibling pages.
# ---------------------------------------------------------------------------
REFERENCE_SELECTORS: tuple[tuple[str, str], ...] = (
    ("link[rel~=stylesheet]", "href"),
    ("script[src]", "src"),
    ("img[src]", "src"),
    ("source[src]", "src"),
    ("video[src]", "src"),
    ("audio[src]", "src"),
    ("a[href]", "href"),
)


def _parse(html: bytes | str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def _base_url(soup: BeautifulSoup, document_url: str) -> str:
    """Honour a ``<base href>`` element when the document declares one."""
    base = soup.find("base", href=True)
    if base is None:
        return document_url
    return urljoin(document_url, str(base["href"]).strip())


def extract_references(html: bytes | str, document_url: str) -> Extraction:
    """Return the absolute URLs referenced by *html*, in discovery order.

    Categories are scanned in :data:`REFERENCE_SELECTORS` order and, within
    a category, in document order.  Each reference is resolved against
    *document_url* (or the document's ``<base>``), its fragment is dropped,
    and repeats collapse to their first occurrence.  Empty and fragment-only
    references are ignored.

    Never raises: a document that cannot be parsed at all yields an empty
    :class:`Extraction` whose ``degraded`` field says why.
    """
    try:
        soup = _parse(html)
        base_url = _base_url(soup, document_url)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Could not parse %s: %s", document_url, exc)
        return Extraction(references=[], degraded=f"unparseable markup ({exc})")

    seen: set[str] = set()
    references: list[str] = []
    for selector, attr in REFERENCE_SELECTORS:
        for element in soup.select(selector):
            raw = element.get(attr)
            if isinstance(raw, list):
                raw = " ".join(raw)
            value = (raw or "").strip()
            if not value or value.startswith("#"):
                continue
            try:
                absolute, _fragment = urldefrag(urljoin(base_url, value))
            except ValueError:
                logger.debug("Unresolvable reference %r on %s", value, document_url)
                continue
            if absolute not in seen:
                seen.add(absolute)
                references.append(absolute)

    return Extraction(references=references)
