"""Bounded-timeout HTTP fetcher.

``Fetcher.fetch`` never raises for network or HTTP problems: every failure
is converted into a :class:`~site_archiver.crawler.models.FetchError` so the
controller can log it and carry on with the next candidate.
"""

from __future__ import annotations

from typing import Mapping, Optional

import httpx

from site_archiver.config import settings
from site_archiver.crawler.models import FetchError, FetchErrorKind, FetchResult


class Fetcher:
    """Performs GET requests for one run over a shared ``httpx.AsyncClient``.

    Every request carries the archiver's ``User-Agent``; the run's custom
    headers are layered on top and may override it.

    Args:
        client: Optional pre-built client (tests pass one with a mock
            transport).  When omitted the fetcher owns and closes its own.
        run_headers: Headers attached to every outbound fetch of the run.
        timeout: Default per-fetch timeout in seconds.
        max_bytes: Response bodies larger than this are rejected as
            ``too-large`` instead of being buffered.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        run_headers: Mapping[str, str] | None = None,
        user_agent: str | None = None,
        timeout: float | None = None,
        max_bytes: int | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(follow_redirects=True)
        self._headers = {"User-Agent": user_agent or settings.user_agent}
        self._headers.update(run_headers or {})
        self.timeout = timeout if timeout is not None else settings.fetch_timeout
        self.max_bytes = max_bytes if max_bytes is not None else settings.max_response_bytes

    async def __aenter__(self) -> "Fetcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    async def fetch(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> FetchResult | FetchError:
        """Fetch *url* and return its body, or a classified error."""
        request_headers = dict(self._headers)
        request_headers.update(headers or {})
        try:
            request = self._client.build_request(
                "GET",
                url,
                headers=request_headers,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except (httpx.InvalidURL, ValueError, TypeError) as exc:
            # Unencodable header values or a malformed URL: nothing was sent.
            return FetchError(
                url=url,
                kind=FetchErrorKind.CONNECTION,
                detail=f"invalid request: {_describe(exc)}",
            )

        try:
            response = await self._client.send(request, stream=True)
            try:
                return await self._read(url, response)
            finally:
                await response.aclose()
        except httpx.TimeoutException as exc:
            return FetchError(url=url, kind=FetchErrorKind.TIMEOUT, detail=_describe(exc))
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            return FetchError(
                url=url, kind=FetchErrorKind.CONNECTION, detail=_describe(exc)
            )

    async def _read(self, url: str, response: httpx.Response) -> FetchResult | FetchError:
        if not response.is_success:
            return FetchError(
                url=url,
                kind=FetchErrorKind.HTTP_ERROR,
                detail=response.reason_phrase,
                status_code=response.status_code,
            )

        declared = response.headers.get("Content-Length", "")
        if declared.isdigit() and int(declared) > self.max_bytes:
            return self._too_large(url)

        chunks: list[bytes] = []
        received = 0
        async for chunk in response.aiter_bytes():
            received += len(chunk)
            if received > self.max_bytes:
                return self._too_large(url)
            chunks.append(chunk)

        return FetchResult(
            url=url,
            final_url=str(response.url),
            status_code=response.status_code,
            content_type=response.headers.get("Content-Type", ""),
            body=b"".join(chunks),
        )

    def _too_large(self, url: str) -> FetchError:
        return FetchError(
            url=url,
            kind=FetchErrorKind.TOO_LARGE,
            detail=f"over {self.max_bytes} bytes",
        )


def _describe(exc: Exception) -> str:
    return str(exc) or type(exc).__name__
