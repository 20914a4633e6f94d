"""Run facade: one call starts a run and hands back its byte stream.

Usage::

    run = start_run(CrawlRequest.create(["https://example.com/"]))
    async for chunk in run.stream():
        sink.write(chunk)
    print(run.metadata.resources, run.log.lines())
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import AsyncIterator, Optional

import httpx

from site_archiver.config import Settings, settings as default_settings
from site_archiver.crawler.controller import CrawlController, RunState
from site_archiver.crawler.errors import CrawlError
from site_archiver.crawler.fetcher import Fetcher
from site_archiver.crawler.models import CrawlRequest, RunMetadata
from site_archiver.crawler.pipe import OutputPipe
from site_archiver.crawler.runlog import RunLog

logger = logging.getLogger(__name__)

# Strong references to runs whose consumer has gone away but whose
# in-flight fetches are still winding down.
_background: set[asyncio.Task] = set()


class ArchiveRun:
    """A single crawl-and-archive run.

    The run does not start until :meth:`stream` is iterated.  Its log,
    counters and state stay readable afterwards.
    """

    def __init__(
        self,
        request: CrawlRequest,
        *,
        config: Settings | None = None,
        client: Optional[httpx.AsyncClient] = None,
        run_id: str | None = None,
    ) -> None:
        self.request = request
        self.run_id = run_id or uuid.uuid4().hex
        self.config = config or default_settings
        self.log = RunLog(self.run_id)
        self.pipe = OutputPipe(self.config.pipe_buffer_chunks)
        self.controller: Optional[CrawlController] = None
        self._client = client
        self._task: Optional[asyncio.Task] = None
        self._cancel_requested = False

    @property
    def state(self) -> str:
        if self.controller is None:
            return RunState.CANCELLED.value if self._cancel_requested else RunState.IDLE.value
        return self.controller.state.value

    @property
    def metadata(self) -> RunMetadata:
        if self.controller is None:
            return RunMetadata(run_id=self.run_id, log_lines=len(self.log), state=self.state)
        return self.controller.metadata

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> None:
        """Abort the run; the stream ends with :class:`ArchiveStreamError`."""
        self._cancel_requested = True
        if self.controller is not None:
            self.controller.cancel()

    async def stream(self) -> AsyncIterator[bytes]:
        """Start the run and yield archive bytes as they are produced.

        Raises:
            ArchiveStreamError: the run failed or was cancelled; the bytes
                yielded so far are not a complete archive.
        """
        if self._task is not None:
            raise RuntimeError(f"Run {self.run_id} already started")
        self._task = asyncio.create_task(self._execute(), name=f"run-{self.run_id}")
        _background.add(self._task)
        self._task.add_done_callback(_background.discard)

        completed = False
        try:
            async for chunk in self.pipe.chunks():
                yield chunk
            completed = True
        finally:
            if not completed and not self._task.done():
                # Consumer left early: stop dispatching and unblock the writer.
                self.cancel()
                self.pipe.abandon()

    async def _execute(self) -> None:
        async with Fetcher(
            self._client,
            run_headers=self.request.header_dict,
            user_agent=self.config.user_agent,
            timeout=self.config.fetch_timeout,
            max_bytes=self.config.max_response_bytes,
        ) as fetcher:
            self.controller = CrawlController(
                self.request,
                fetcher,
                self.pipe,
                self.log,
                config=self.config,
                run_id=self.run_id,
            )
            if self._cancel_requested:
                self.controller.cancel()
            try:
                await self.controller.run()
            except CrawlError as exc:
                # Already delivered to the consumer through the pipe.
                logger.info("Run %s ended early: %s", self.run_id, exc)
            except Exception:
                logger.exception("Run %s crashed", self.run_id)


def start_run(
    request: CrawlRequest,
    *,
    config: Settings | None = None,
    client: Optional[httpx.AsyncClient] = None,
    run_id: str | None = None,
) -> ArchiveRun:
    """Create a run for *request*; iterate ``run.stream()`` to execute it."""
    return ArchiveRun(request, config=config, client=client, run_id=run_id)
