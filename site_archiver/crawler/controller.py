"""Crawl controller: drives one run from seeds to a finalized archive.

Lifecycle::

    idle -> seeding -> expanding -> draining -> done
                \\          \\           \\
                 +----------+-----------+--> aborted | cancelled

Seeding admits every seed through the policy gate, in request order.
Admitted candidates go onto a work queue drained by a fixed pool of
worker tasks; each worker fetches one candidate, hands the body to the
archive task and, for expandable HTML pages, admits the page's references
back onto the queue.  The archive task is the only code that touches the
:class:`ArchiveWriter`, so entries are appended strictly one at a time.

The fetcher follows redirects.  A seed may land anywhere, and its
references are then scoped to the landing origin; any other resource that
lands off its run origin, or on a robots-excluded path, is dropped.

Once the queue is empty and no fetch is in flight the run drains: workers
stop, the archive task writes its last entries, the final log line is
recorded and the archive is finalized with the run counters in its
comment.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional

from site_archiver.config import Settings, settings as default_settings
from site_archiver.crawler.archive import ArchiveWriter
from site_archiver.crawler.errors import ArchiveFault, Cancelled
from site_archiver.crawler.extractor import extract_references
from site_archiver.crawler.fetcher import Fetcher
from site_archiver.crawler.models import (
    Candidate,
    CrawlMode,
    CrawlRequest,
    FetchError,
    RunMetadata,
)
from site_archiver.crawler.pipe import OutputPipe
from site_archiver.crawler.policy import PolicyGate, RobotsCache
from site_archiver.crawler.runlog import LogKind, ResourceCounter, RunLog
from site_archiver.crawler.urls import normalize_url

logger = logging.getLogger(__name__)

_END = object()


class RunState(str, Enum):
    IDLE = "idle"
    SEEDING = "seeding"
    EXPANDING = "expanding"
    DRAINING = "draining"
    DONE = "done"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


class CrawlController:
    """Owns one run: its gate, counter, log, workers and archive writer."""

    def __init__(
        self,
        request: CrawlRequest,
        fetcher: Fetcher,
        pipe: OutputPipe,
        log: RunLog,
        *,
        config: Settings | None = None,
        run_id: str = "",
    ) -> None:
        cfg = config or default_settings
        self.request = request
        self.run_id = run_id or log.run_id
        self.log = log
        self.state = RunState.IDLE
        self.error: Optional[BaseException] = None

        self._fetcher = fetcher
        self._pipe = pipe
        self._worker_count = max(cfg.worker_count, 1)
        self._counter = ResourceCounter(cfg.resource_ceiling)
        self._gate = PolicyGate(
            RobotsCache(fetcher, user_agent=cfg.robots_user_agent, timeout=cfg.robots_timeout),
            self._counter,
            log,
        )
        self._writer = ArchiveWriter(cfg.compression_level)

        self._work: asyncio.Queue = asyncio.Queue()
        # One slot per worker: a blocked worker always fits once drained.
        self._results: asyncio.Queue = asyncio.Queue(maxsize=self._worker_count)
        self._stop = asyncio.Event()
        self._cancel_requested = False
        self._failure: Optional[BaseException] = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def counter(self) -> ResourceCounter:
        return self._counter

    @property
    def gate(self) -> PolicyGate:
        return self._gate

    @property
    def metadata(self) -> RunMetadata:
        return RunMetadata(
            run_id=self.run_id,
            resources=self._counter.archived,
            log_lines=len(self.log),
            state=self.state.value,
            error=str(self.error) if self.error else None,
        )

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------
    def cancel(self) -> None:
        """Stop dispatching new fetches; in-flight fetches are left to finish."""
        if self.state in (RunState.DONE, RunState.ABORTED, RunState.CANCELLED):
            return
        self._cancel_requested = True
        self._stop.set()

    async def run(self) -> RunMetadata:
        """Execute the run and return its final counters.

        Raises:
            Cancelled: :meth:`cancel` was called before the run finished.
            ArchiveFault: the archive writer failed; the run was aborted.
        """
        if self.state is not RunState.IDLE:
            raise RuntimeError(f"Run {self.run_id} already started")

        archive_task = asyncio.create_task(self._archive_loop())
        workers = [
            asyncio.create_task(self._worker(), name=f"{self.run_id}-worker-{i}")
            for i in range(self._worker_count)
        ]
        try:
            self.state = RunState.SEEDING
            await self._seed()

            self.state = RunState.EXPANDING
            await self._wait_for_idle(archive_task)

            self.state = RunState.DRAINING
            for _ in workers:
                self._work.put_nowait(None)
            await asyncio.gather(*workers)
            await self._close_archive_loop(archive_task)
            self._raise_if_stopped()

            return await self._finish()
        except BaseException as exc:
            await self._abort(exc, workers, archive_task)
            raise

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------
    async def _seed(self) -> None:
        expand = self.request.mode is not CrawlMode.HTML_ONLY
        for seed in self.request.seeds:
            if self._stop.is_set():
                return
            self.log.info(f"starting download of {seed}")
            decision = await self._gate.admit(seed, seed)
            if decision.allowed:
                self._work.put_nowait(
                    Candidate(url=seed, path=decision.path, origin=seed, expand=expand, seed=True)
                )

    async def _wait_for_idle(self, archive_task: asyncio.Task) -> None:
        idle = asyncio.create_task(self._work.join())
        stopped = asyncio.create_task(self._stop.wait())
        try:
            done, _ = await asyncio.wait(
                {idle, stopped, archive_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            idle.cancel()
            stopped.cancel()

        if archive_task in done:
            archive_task.result()
            raise ArchiveFault("Archive writer stopped before the run finished")
        self._raise_if_stopped()

    async def _close_archive_loop(self, archive_task: asyncio.Task) -> None:
        # The archive task may already have died with a full results queue.
        end = asyncio.create_task(self._results.put(_END))
        await asyncio.wait({end, archive_task}, return_when=asyncio.FIRST_COMPLETED)
        if not end.done():
            end.cancel()
        await archive_task

    def _raise_if_stopped(self) -> None:
        if self._failure is not None:
            raise self._failure
        if self._cancel_requested:
            raise Cancelled("Run cancelled by caller")

    async def _finish(self) -> RunMetadata:
        self.log.info(
            f"archive finalized with {self._counter.archived} resource(s)"
        )
        self.state = RunState.DONE
        metadata = self.metadata
        self.log.freeze()
        for chunk in self._writer.finalize(metadata.as_comment()):
            await self._pipe.send(chunk)
        await self._pipe.close(metadata)
        logger.info(
            "Run %s done: %d resources, %d log lines",
            self.run_id, metadata.resources, metadata.log_lines,
        )
        return metadata

    async def _abort(
        self,
        exc: BaseException,
        workers: list[asyncio.Task],
        archive_task: asyncio.Task,
    ) -> None:
        self.error = exc
        self._stop.set()
        self._drain_results()
        archive_task.cancel()
        # Workers finish their in-flight fetch, then skip what is still queued.
        for _ in workers:
            self._work.put_nowait(None)
        await asyncio.gather(*workers, return_exceptions=True)
        await asyncio.gather(archive_task, return_exceptions=True)
        self._writer.abort()

        if isinstance(exc, Cancelled) or self._cancel_requested:
            self.state = RunState.CANCELLED
            self.log.add(LogKind.INFO, f"run cancelled: {exc}")
        else:
            self.state = RunState.ABORTED
            self.log.add(LogKind.ERROR, f"run aborted: {exc}")
        metadata = self.metadata
        self.log.freeze()
        self._pipe.fail(exc, metadata)
        logger.warning("Run %s %s: %s", self.run_id, self.state.value, exc)

    def _drain_results(self) -> None:
        while True:
            try:
                self._results.get_nowait()
            except asyncio.QueueEmpty:
                return

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------
    async def _worker(self) -> None:
        while True:
            candidate = await self._work.get()
            try:
                if candidate is None:
                    return
                if self._stop.is_set():
                    self._counter.release()
                    self.log.skipped(candidate.url, "cancelled")
                    continue
                await self._process(candidate)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Worker failed on %s", candidate.url)
                if self._failure is None:
                    self._failure = exc
                self._stop.set()
            finally:
                self._work.task_done()

    async def _process(self, candidate: Candidate) -> None:
        self.log.fetching(candidate.url)
        outcome = await self._fetcher.fetch(candidate.url)
        if isinstance(outcome, FetchError):
            self._counter.release()
            self.log.failed(candidate.url, str(outcome))
            return

        refusal = await self._gate.check_redirect(
            candidate.url, outcome.final_url, candidate.origin, seed=candidate.seed
        )
        if refusal is not None:
            self._counter.release()
            return
        # A seed's references are scoped to wherever the seed finally landed.
        scope = outcome.final_url if candidate.seed else candidate.origin

        references: list[str] = []
        if candidate.expand and outcome.is_html:
            extraction = extract_references(outcome.body, outcome.final_url)
            if extraction.degraded:
                self.log.degraded(candidate.url, extraction.degraded)
            references = extraction.references

        await self._hand_to_archive(candidate, outcome.body)

        expand_children = self.request.mode is CrawlMode.FULL_RECURSIVE
        for reference in references:
            if self._stop.is_set():
                return
            decision = await self._gate.admit(reference, scope)
            if decision.allowed:
                self._work.put_nowait(
                    Candidate(
                        url=normalize_url(reference),
                        path=decision.path,
                        origin=scope,
                        expand=expand_children,
                    )
                )

    async def _hand_to_archive(self, candidate: Candidate, body: bytes) -> None:
        if self._stop.is_set():
            self._counter.release()
            return
        await self._results.put((candidate, body))

    # ------------------------------------------------------------------
    # Archive task
    # ------------------------------------------------------------------
    async def _archive_loop(self) -> None:
        while True:
            item = await self._results.get()
            if item is _END:
                return
            candidate, body = item
            chunks = self._writer.append(candidate.path, body)
            self._counter.commit()
            self.log.archived(candidate.url, candidate.path)
            for chunk in chunks:
                await self._pipe.send(chunk)

