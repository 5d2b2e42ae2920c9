#!/usr/bin/env python3
"""
Playwright-backed Page Automation Surface.

Each "tab" is a Playwright page inside one browser context. With a user data
dir the context is persistent, so the operator's login on the job site
survives restarts.

Workers announce readiness through an exposed binding
(``window.__hhRelayAnnounce``); announcements are validated and forwarded to
the registered ready listener without blocking the page.
"""

import asyncio
import itertools
import logging
import random
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from playwright.async_api import BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from core.errors import TabOperationError, WorkerProtocolError, WorkerTimeoutError
from core.protocol import parse_worker_message
from core.tabs import PageAutomationSurface, ReadyListener

logger = logging.getLogger(__name__)

WORKER_DIR = Path(__file__).parent
ANNOUNCE_BINDING = "__hhRelayAnnounce"

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
]

VIEWPORTS = [
    {"width": 1920, "height": 1080},
    {"width": 1536, "height": 864},
    {"width": 1440, "height": 900},
]


class PlaywrightTabSurface(PageAutomationSurface):
    """
    Tabs over a single Playwright browser context.

    Example:
        async with PlaywrightTabSurface(headless=False) as surface:
            tab_id = await surface.create_tab("https://hh.ru/chat/123")
            await surface.wait_for_load(tab_id, 10.0)
    """

    def __init__(
        self,
        headless: bool = False,
        user_data_dir: Optional[str] = None,
        worker_dir: Optional[Path] = None,
        locale: str = "ru-RU",
    ):
        self.headless = headless
        self.user_data_dir = user_data_dir
        self.worker_dir = Path(worker_dir) if worker_dir else WORKER_DIR
        self.locale = locale

        self._playwright = None
        self._browser = None
        self._context: Optional[BrowserContext] = None

        self._ids = itertools.count(1)
        self._tabs: Dict[int, Page] = {}
        self._tab_ids: Dict[Page, int] = {}
        self._active_tab: Optional[int] = None
        # Tabs opened with active=False; never resolved as the operator's tab.
        self._background_tabs: Set[int] = set()
        self._listener: Optional[ReadyListener] = None
        self._listener_tasks: Set[asyncio.Task] = set()

    async def start(self) -> "PlaywrightTabSurface":
        if self._context is not None:
            return self

        self._playwright = await async_playwright().start()
        context_args = {
            "viewport": random.choice(VIEWPORTS),
            "user_agent": random.choice(USER_AGENTS),
            "locale": self.locale,
        }
        if self.user_data_dir:
            Path(self.user_data_dir).mkdir(parents=True, exist_ok=True)
            self._context = await self._playwright.chromium.launch_persistent_context(
                self.user_data_dir,
                headless=self.headless,
                **context_args,
            )
        else:
            self._browser = await self._playwright.chromium.launch(headless=self.headless)
            self._context = await self._browser.new_context(**context_args)

        await self._context.expose_binding(ANNOUNCE_BINDING, self._on_announce)
        self._context.on("page", self._register_page)
        for page in self._context.pages:
            self._register_page(page)
        await self._ensure_operator_page()

        logger.info(f"[Browser] Playwright surface started (headless={self.headless}, persistent={bool(self.user_data_dir)})")
        return self

    async def stop(self):
        for task in list(self._listener_tasks):
            task.cancel()
        try:
            if self._context is not None:
                await self._context.close()
            if self._browser is not None:
                await self._browser.close()
        finally:
            if self._playwright is not None:
                await self._playwright.stop()
            self._context = None
            self._browser = None
            self._playwright = None
            self._tabs.clear()
            self._tab_ids.clear()
            self._background_tabs.clear()
            self._active_tab = None
        logger.info("[Browser] Playwright surface stopped")

    async def __aenter__(self):
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    # ------------------------------------------------------------------
    # Tab bookkeeping
    # ------------------------------------------------------------------

    def _register_page(self, page: Page) -> int:
        if page in self._tab_ids:
            return self._tab_ids[page]
        tab_id = next(self._ids)
        self._tabs[tab_id] = page
        self._tab_ids[page] = tab_id
        page.on("close", lambda _page: self._forget(tab_id))
        logger.debug(f"[Browser] Tracking tab {tab_id}")
        return tab_id

    def _forget(self, tab_id: int):
        page = self._tabs.pop(tab_id, None)
        if page is not None:
            self._tab_ids.pop(page, None)
        self._background_tabs.discard(tab_id)
        if self._active_tab == tab_id:
            self._active_tab = None

    async def _ensure_operator_page(self):
        """A fresh non-persistent context has no pages; give the operator one."""
        context = self._require_context()
        if context.pages:
            return
        page = await context.new_page()
        self._active_tab = self._register_page(page)
        logger.info(f"[Browser] Opened operator tab {self._active_tab}")

    def _operator_tabs(self) -> List[int]:
        return [
            tab_id for tab_id, page in self._tabs.items()
            if tab_id not in self._background_tabs and not page.is_closed()
        ]

    def _page(self, tab_id: int) -> Page:
        page = self._tabs.get(tab_id)
        if page is None or page.is_closed():
            raise TabOperationError(f"Tab {tab_id} is not open", tab_id)
        return page

    def _require_context(self) -> BrowserContext:
        if self._context is None:
            raise TabOperationError("Browser surface is not started")
        return self._context

    def _resolve_script(self, script_ref: str) -> Path:
        path = Path(script_ref)
        if not path.is_absolute():
            path = self.worker_dir / path
        if not path.exists():
            raise TabOperationError(f"Worker script not found: {path}")
        return path

    # ------------------------------------------------------------------
    # PageAutomationSurface
    # ------------------------------------------------------------------

    async def navigate(self, tab_id: int, url: str) -> None:
        page = self._page(tab_id)
        try:
            await page.goto(url, wait_until="commit")
        except PlaywrightError as e:
            raise TabOperationError(f"Navigation of tab {tab_id} failed: {e}", tab_id) from e

    async def wait_for_load(self, tab_id: int, timeout: float) -> bool:
        page = self._tabs.get(tab_id)
        if page is None or page.is_closed():
            return False
        try:
            await page.wait_for_load_state("load", timeout=timeout * 1000)
            return True
        except PlaywrightTimeoutError:
            return False
        except PlaywrightError as e:
            logger.debug(f"[Browser] Load wait on tab {tab_id} interrupted: {e}")
            return False

    async def inject(self, tab_id: int, script_ref: str) -> None:
        page = self._page(tab_id)
        path = self._resolve_script(script_ref)
        try:
            await page.add_script_tag(path=str(path))
        except PlaywrightError as e:
            raise TabOperationError(f"Injection into tab {tab_id} failed: {e}", tab_id) from e

    async def send_to_worker(self, tab_id: int, request: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        page = self._page(tab_id)
        script = "req => window.__hhRelayWorker ? window.__hhRelayWorker.handle(req) : null"
        try:
            reply = await asyncio.wait_for(page.evaluate(script, request), timeout)
        except asyncio.TimeoutError as e:
            raise WorkerTimeoutError(request.get("type", "?"), timeout, tab_id) from e
        except PlaywrightError as e:
            raise WorkerProtocolError(f"Worker call in tab {tab_id} failed: {e}") from e
        if reply is None:
            raise WorkerProtocolError(f"No worker present in tab {tab_id}")
        return reply

    async def create_tab(self, url: str, active: bool = False) -> int:
        context = self._require_context()
        try:
            page = await context.new_page()
        except PlaywrightError as e:
            raise TabOperationError(f"Could not open a tab: {e}") from e
        tab_id = self._register_page(page)
        if not active:
            self._background_tabs.add(tab_id)
        try:
            if active:
                await page.bring_to_front()
                self._active_tab = tab_id
            await self.navigate(tab_id, url)
        except BaseException:
            # The caller never learns the id, so the page is closed here.
            await self._discard_page(tab_id, page)
            raise
        return tab_id

    async def _discard_page(self, tab_id: int, page: Page):
        try:
            await asyncio.shield(page.close())
        except (PlaywrightError, asyncio.CancelledError) as e:
            logger.debug(f"[Browser] Closing unreturned tab {tab_id}: {e!r}")
        finally:
            self._forget(tab_id)

    async def close_tab(self, tab_id: int) -> None:
        page = self._tabs.get(tab_id)
        if page is None or page.is_closed():
            return
        try:
            await page.close()
        except PlaywrightError as e:
            logger.debug(f"[Browser] Tab {tab_id} already gone: {e}")
        finally:
            self._forget(tab_id)

    async def query_active_tab(self) -> Optional[int]:
        if self._active_tab is not None and self._active_tab in self._tabs:
            return self._active_tab
        for tab_id in self._operator_tabs():
            page = self._tabs[tab_id]
            try:
                visible = await page.evaluate("document.visibilityState === 'visible'")
            except PlaywrightError:
                continue
            if visible:
                return tab_id
        return None

    async def activate_tab(self, tab_id: int) -> None:
        page = self._page(tab_id)
        await page.bring_to_front()
        self._background_tabs.discard(tab_id)
        self._active_tab = tab_id

    async def list_tabs(self) -> List[int]:
        return [tab_id for tab_id, page in self._tabs.items() if not page.is_closed()]

    def set_ready_listener(self, listener: Optional[ReadyListener]) -> None:
        self._listener = listener

    async def _on_announce(self, source: Dict[str, Any], payload: Any):
        page = source.get("page")
        tab_id = self._tab_ids.get(page)
        if tab_id is None:
            logger.debug("[Browser] Announcement from an untracked page ignored")
            return
        try:
            message = parse_worker_message(payload)
        except WorkerProtocolError as e:
            logger.warning(f"[Browser] Rejected worker message from tab {tab_id}: {e}")
            return

        logger.debug(f"[Browser] Tab {tab_id} ready on chat {message.chat_id}")
        if self._listener is None:
            return
        task = asyncio.create_task(self._listener(tab_id, message.chat_id))
        self._listener_tasks.add(task)
        task.add_done_callback(self._listener_tasks.discard)
