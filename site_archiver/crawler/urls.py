"""URL helpers shared by the policy gate, extractor and archive writer."""

from __future__ import annotations

from urllib.parse import urlsplit, urlunsplit

_DEFAULT_PORTS = {"http": 80, "https": 443}

FETCHABLE_SCHEMES = frozenset({"http", "https"})


def normalize_url(url: str) -> str:
    """Normalize a URL for de-duplication.

    - Lowercases scheme + hostname.
    - Drops the port when it is the scheme's default.
    - Strips the fragment; the query string is kept.
    - An empty path becomes ``/``.

    Non-hierarchical URLs (``data:``, ``mailto:`` …) are returned unchanged.
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    if scheme not in FETCHABLE_SCHEMES:
        return url.strip()
    return urlunsplit((scheme, _netloc(parts), parts.path or "/", parts.query, ""))


def origin_of(url: str) -> str:
    """Return ``scheme://host[:port]`` for *url* (default ports omitted).

    URLs without a network location (``data:``, ``javascript:`` …) yield
    ``"<scheme>:"`` so they never compare equal to a web origin.
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    if not parts.netloc:
        return f"{scheme}:"
    return f"{scheme}://{_netloc(parts)}"


def netloc_of(url: str) -> str:
    """Return the normalized ``host[:port]`` of *url*."""
    return _netloc(urlsplit(url.strip()))


def is_web_url(url: str) -> bool:
    """Return ``True`` for absolute ``http``/``https`` URLs with a host."""
    try:
        parts = urlsplit(url.strip())
        hostname = parts.hostname
    except ValueError:
        return False
    return parts.scheme.lower() in FETCHABLE_SCHEMES and bool(hostname)


def _netloc(parts) -> str:
    host = (parts.hostname or "").lower()
    if ":" in host:
        # IPv6 literal
        host = f"[{host}]"
    try:
        port = parts.port
    except ValueError:
        port = None
    if port is None or port == _DEFAULT_PORTS.get(parts.scheme.lower()):
        return host
    return f"{host}:{port}"
