#!/usr/bin/env python3
"""
Resume Batch Extractor - drain pending resume links from the Resource Registry.

For every link: parse the resume id, load the page in a controlled tab,
ask the worker for the page HTML, upsert it into the Registry and mark the
link processed (with the error message when anything failed).

Two tab strategies:
- shared-tab: one tab reused serially for the whole batch (O(1) tabs)
- per-link: a disposable tab per link, processed in windows of
  ``max_open_tabs`` joined before the next window starts

Guarantees:
- one link's failure never aborts the batch
- every attempted link gets exactly one mark-processed call
- no two fetches for the same link run at the same time
- every tab opened here is closed, even on unexpected errors
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from .errors import TabOperationError, WorkerProtocolError
from .html_cleaner import clean_html
from .models import ExtractionLink, ExtractionOutcome, ExtractionStrategy, LinkResult, extract_resume_id
from .protocol import FetchHtmlRequest
from .tabs import (
    PageAutomationSurface,
    close_tab_quietly,
    navigate_tab,
    open_tab,
    prepare_tab,
    request_worker,
)

logger = logging.getLogger(__name__)


@dataclass
class ExtractorConfig:
    worker_script: str = "worker.js"
    strategy: ExtractionStrategy = ExtractionStrategy.SHARED_TAB
    max_batch_size: int = 1000
    max_open_tabs: int = 3
    link_delay_seconds: float = 1.0
    load_timeout_seconds: float = 10.0
    tab_op_timeout_seconds: float = 15.0
    worker_timeout_seconds: float = 30.0
    error_sample_size: int = 5
    clean_html: bool = True

    @classmethod
    def from_app_config(cls, cfg) -> "ExtractorConfig":
        return cls(
            worker_script=cfg.WORKER_SCRIPT,
            strategy=ExtractionStrategy(cfg.EXTRACT_STRATEGY),
            max_batch_size=cfg.EXTRACT_MAX_BATCH_SIZE,
            max_open_tabs=cfg.EXTRACT_MAX_OPEN_TABS,
            link_delay_seconds=cfg.EXTRACT_LINK_DELAY_SECONDS,
            load_timeout_seconds=cfg.TAB_LOAD_TIMEOUT_SECONDS,
            tab_op_timeout_seconds=cfg.TAB_OP_TIMEOUT_SECONDS,
            worker_timeout_seconds=cfg.WORKER_TIMEOUT_SECONDS,
            error_sample_size=cfg.EXTRACT_ERROR_SAMPLE_SIZE,
            clean_html=cfg.EXTRACT_CLEAN_HTML,
        )


class _SharedTab:
    """One tab reused serially; reopened if it dies mid-batch."""

    def __init__(self, extractor: "ResumeBatchExtractor"):
        self.extractor = extractor
        self.tab_id: Optional[int] = None

    async def goto(self, url: str) -> int:
        ext = self.extractor
        if self.tab_id is None:
            self.tab_id = await ext._open(url)
            return self.tab_id
        try:
            await navigate_tab(ext.surface, self.tab_id, url, ext.config.tab_op_timeout_seconds)
        except TabOperationError:
            await self.discard()
            raise
        return self.tab_id

    async def discard(self):
        tab_id, self.tab_id = self.tab_id, None
        await self.extractor._close(tab_id)


class ResumeBatchExtractor:
    """
    Extract resume HTML for a bounded batch of pending links.

    ``registry`` must provide ``list_unprocessed_links(limit)``,
    ``mark_processed(link_id, error=None)`` and
    ``upsert_html(resource_id, source_url, html_content)``
    (see ``api.registry_client.RegistryClient``).
    """

    def __init__(self, surface: PageAutomationSurface, registry: Any, config: Optional[ExtractorConfig] = None):
        self.surface = surface
        self.registry = registry
        self.config = config or ExtractorConfig()

        self._in_flight: Set[int] = set()
        self._open_tabs: Set[int] = set()
        self.peak_open_tabs = 0

        self.stats = {
            "batches": 0,
            "links_processed": 0,
            "links_succeeded": 0,
            "links_failed": 0,
            "links_skipped": 0,
        }

    @property
    def open_tab_count(self) -> int:
        return len(self._open_tabs)

    async def run_batch(self, requested_count: int, strategy: Optional[ExtractionStrategy] = None) -> ExtractionOutcome:
        """
        Process up to ``requested_count`` pending links.

        Raises:
            ValueError: ``requested_count`` is not a positive integer
            RegistryError: the pending links could not be listed
        """
        if isinstance(requested_count, bool) or not isinstance(requested_count, int) or requested_count <= 0:
            raise ValueError(f"requested_count must be a positive integer, got {requested_count!r}")

        limit = min(requested_count, self.config.max_batch_size)
        strategy = ExtractionStrategy(strategy or self.config.strategy)
        outcome = ExtractionOutcome(requested_count=limit, max_error_samples=self.config.error_sample_size)

        # Registry errors here abort the whole run; nothing has been attempted yet.
        links = await self.registry.list_unprocessed_links(limit)
        if not links:
            logger.info("[Extract] No unprocessed resume links found")
            return outcome

        claimed = self._claim(links[:limit])
        logger.info(f"[Extract] Found {len(links)} unprocessed links, processing {len(claimed)} ({strategy.value})")
        self.stats["batches"] += 1

        try:
            if strategy == ExtractionStrategy.PER_LINK:
                await self._run_per_link(claimed, outcome)
            else:
                await self._run_shared_tab(claimed, outcome)
        finally:
            self._in_flight.difference_update(link.id for link in claimed)

        logger.info(
            f"[Extract] Batch done: {outcome.processed_count} processed, "
            f"{outcome.succeeded_count} succeeded, {outcome.failed_count} failed"
        )
        return outcome

    def _claim(self, links: List[ExtractionLink]) -> List[ExtractionLink]:
        """Drop duplicates and links another batch is already fetching."""
        claimed: List[ExtractionLink] = []
        for link in links:
            if link.id in self._in_flight:
                self.stats["links_skipped"] += 1
                logger.warning(f"[Extract] Link {link.id} already in flight, skipping")
                continue
            self._in_flight.add(link.id)
            claimed.append(link)
        return claimed

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def _run_shared_tab(self, links: List[ExtractionLink], outcome: ExtractionOutcome):
        shared = _SharedTab(self)
        try:
            for index, link in enumerate(links):
                if index:
                    await asyncio.sleep(self.config.link_delay_seconds)
                result = await self._attempt(link, shared)
                self._record(outcome, result, len(links))
        finally:
            await shared.discard()

    async def _run_per_link(self, links: List[ExtractionLink], outcome: ExtractionOutcome):
        window = max(1, self.config.max_open_tabs)
        for start in range(0, len(links), window):
            if start:
                await asyncio.sleep(self.config.link_delay_seconds)
            chunk = links[start:start + window]
            logger.debug(f"[Extract] Window {start // window + 1}: {len(chunk)} links")
            results = await asyncio.gather(
                *(self._attempt(link, None) for link in chunk),
                return_exceptions=True,
            )
            for link, result in zip(chunk, results):
                if isinstance(result, BaseException):
                    result = LinkResult(link=link, success=False, error=str(result) or type(result).__name__)
                self._record(outcome, result, len(links))

    # ------------------------------------------------------------------
    # Per link
    # ------------------------------------------------------------------

    async def _attempt(self, link: ExtractionLink, shared: Optional[_SharedTab]) -> LinkResult:
        started = time.time()
        resource_id = None
        try:
            resource_id = extract_resume_id(link.url)
            if shared is not None:
                html = await self._fetch_on_shared_tab(shared, link)
            else:
                html = await self._fetch_in_own_tab(link)

            if self.config.clean_html:
                cleaned = clean_html(html)
                logger.debug(f"[Extract] {resource_id}: cleaned HTML reduced by {cleaned.reduction_percent}%")
                html = cleaned.html

            await self.registry.upsert_html(resource_id, link.url, html)
            result = LinkResult(link=link, success=True, resource_id=resource_id)
        except Exception as e:
            result = LinkResult(link=link, success=False, resource_id=resource_id, error=str(e) or type(e).__name__)

        await self._mark_processed(result)
        result.duration_seconds = time.time() - started
        return result

    async def _fetch_on_shared_tab(self, shared: _SharedTab, link: ExtractionLink) -> str:
        cfg = self.config
        tab_id = await shared.goto(link.url)
        try:
            await prepare_tab(self.surface, tab_id, cfg.worker_script, cfg.load_timeout_seconds, cfg.tab_op_timeout_seconds)
        except TabOperationError:
            await shared.discard()
            raise
        return await self._fetch_html(tab_id, link)

    async def _fetch_in_own_tab(self, link: ExtractionLink) -> str:
        cfg = self.config
        tab_id = None
        try:
            tab_id = await self._open(link.url)
            await prepare_tab(self.surface, tab_id, cfg.worker_script, cfg.load_timeout_seconds, cfg.tab_op_timeout_seconds)
            return await self._fetch_html(tab_id, link)
        finally:
            await self._close(tab_id)

    async def _fetch_html(self, tab_id: int, link: ExtractionLink) -> str:
        response = await request_worker(
            self.surface,
            tab_id,
            FetchHtmlRequest(url=link.url),
            self.config.worker_timeout_seconds,
        )
        if not response.html:
            raise WorkerProtocolError(f"Worker returned empty HTML for {link.url}")
        return response.html

    async def _mark_processed(self, result: LinkResult):
        try:
            await self.registry.mark_processed(result.link.id, error=result.error)
        except Exception as e:
            logger.error(f"[Extract] Failed to mark link {result.link.id} processed: {e}")
            if result.success:
                result.success = False
                result.error = f"Failed to mark processed: {e}"

    def _record(self, outcome: ExtractionOutcome, result: LinkResult, total: int):
        outcome.record(result)
        self.stats["links_processed"] += 1
        position = f"[{outcome.processed_count}/{total}]"
        if result.success:
            self.stats["links_succeeded"] += 1
            logger.info(f"[Extract] {position} Saved {result.resource_id} ({result.duration_seconds:.2f}s)")
        else:
            self.stats["links_failed"] += 1
            logger.warning(f"[Extract] {position} Failed {result.link.url}: {result.error}")

    # ------------------------------------------------------------------
    # Tabs
    # ------------------------------------------------------------------

    async def _open(self, url: str) -> int:
        tab_id = await open_tab(self.surface, url, False, self.config.tab_op_timeout_seconds)
        self._open_tabs.add(tab_id)
        self.peak_open_tabs = max(self.peak_open_tabs, len(self._open_tabs))
        return tab_id

    async def _close(self, tab_id: Optional[int]):
        if tab_id is None:
            return
        self._open_tabs.discard(tab_id)
        await close_tab_quietly(self.surface, tab_id)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "open_tabs": len(self._open_tabs),
            "peak_open_tabs": self.peak_open_tabs,
            "in_flight": len(self._in_flight),
        }
