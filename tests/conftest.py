"""
Pytest fixtures and configuration for the hh-relay test suite.
"""

import pytest
import asyncio
import itertools
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.errors import RegistryUnavailableError
from core.models import ExtractionLink
from core.tabs import PageAutomationSurface


# === Fake Page Automation Surface ===

class FakeTabSurface(PageAutomationSurface):
    """
    In-memory surface that records every call.

    ``calls`` holds ``(operation, tab_id, detail)`` tuples in call order.
    Worker replies come from ``worker_handler(tab_id, request)``; by default
    every request succeeds and fetch-html returns a small resume page.
    """

    def __init__(self, active_tab: Optional[int] = 1):
        self._ids = itertools.count(100)
        self.calls: List[tuple] = []
        self.open_tabs = set()
        self.closed_tabs: List[int] = []
        self.active_tab = active_tab
        if active_tab is not None:
            self.open_tabs.add(active_tab)
        self.urls: Dict[int, str] = {}
        self.listener = None

        self.load_result = True
        self.load_delay = 0.0
        self.worker_delay = 0.0
        self.fail_create: Callable[[str], bool] = lambda url: False
        self.fail_inject: Callable[[int], bool] = lambda tab_id: False
        self.fail_close = False
        self.worker_handler: Callable[[int, Dict[str, Any]], Any] = self.default_worker_reply

        self.concurrent_open = 0
        self.peak_open = 0

    def default_worker_reply(self, tab_id: int, request: Dict[str, Any]):
        if request["type"] == "fetch-html":
            return {"success": True, "html": f"<html><body><h1>{request['url']}</h1></body></html>"}
        if request["type"] == "list-chats":
            return {"success": True, "chats": []}
        return {"success": True}

    def ops(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]

    async def navigate(self, tab_id, url):
        self.calls.append(("navigate", tab_id, url))
        self.urls[tab_id] = url

    async def wait_for_load(self, tab_id, timeout):
        self.calls.append(("wait_for_load", tab_id, timeout))
        if self.load_delay:
            await asyncio.sleep(self.load_delay)
        return self.load_result

    async def inject(self, tab_id, script_ref):
        self.calls.append(("inject", tab_id, script_ref))
        if tab_id not in self.open_tabs or self.fail_inject(tab_id):
            raise RuntimeError(f"No tab with id: {tab_id}")

    async def send_to_worker(self, tab_id, request, timeout):
        self.calls.append(("send_to_worker", tab_id, request))
        if self.worker_delay:
            await asyncio.sleep(self.worker_delay)
        reply = self.worker_handler(tab_id, request)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def create_tab(self, url, active=False):
        if self.fail_create(url):
            self.calls.append(("create_tab", None, url))
            raise RuntimeError("Tab creation failed")
        tab_id = next(self._ids)
        self.calls.append(("create_tab", tab_id, url))
        self.open_tabs.add(tab_id)
        self.urls[tab_id] = url
        self.concurrent_open = len(self.open_tabs - {self.active_tab})
        self.peak_open = max(self.peak_open, self.concurrent_open)
        return tab_id

    async def close_tab(self, tab_id):
        self.calls.append(("close_tab", tab_id, None))
        if self.fail_close:
            raise RuntimeError("Close failed")
        if tab_id in self.open_tabs:
            self.open_tabs.discard(tab_id)
            self.closed_tabs.append(tab_id)

    async def query_active_tab(self):
        self.calls.append(("query_active_tab", self.active_tab, None))
        return self.active_tab

    async def list_tabs(self):
        return sorted(self.open_tabs)

    def set_ready_listener(self, listener):
        self.listener = listener

    async def announce(self, tab_id: int, chat_id: str):
        """Simulate a worker announcing readiness."""
        if self.listener is not None:
            await self.listener(tab_id, chat_id)


# === Fake Resource Registry ===

class FakeRegistry:
    """Registry double with the interface of api.registry_client.RegistryClient."""

    def __init__(self, links: Optional[List[ExtractionLink]] = None):
        self.links = list(links or [])
        self.saved: Dict[str, Dict[str, str]] = {}
        self.marked: List[tuple] = []
        self.chats = []
        self.fail_listing = False
        self.fail_upsert_for: set = set()
        self.fail_mark_for: set = set()
        self.list_calls: List[int] = []

    async def list_unprocessed_links(self, limit):
        self.list_calls.append(limit)
        if self.fail_listing:
            raise RegistryUnavailableError("GET /links/unprocessed failed: connection refused")
        marked_ids = {link_id for link_id, _ in self.marked}
        return [link for link in self.links if link.id not in marked_ids][:limit]

    async def upsert_html(self, resource_id, source_url, html_content):
        if resource_id in self.fail_upsert_for:
            raise RegistryUnavailableError("POST /resource/html failed: connection reset")
        self.saved[resource_id] = {"sourceUrl": source_url, "htmlContent": html_content}

    async def mark_processed(self, link_id, error=None):
        if link_id in self.fail_mark_for:
            raise RegistryUnavailableError(f"POST /links/{link_id}/processed timed out")
        self.marked.append((link_id, error))

    async def upsert_chats(self, chats):
        self.chats.extend(chats)
        return len(chats)


def make_links(*ids: str, start: int = 1) -> List[ExtractionLink]:
    """Links for resume ids; pass a full URL to use it verbatim."""
    links = []
    for offset, value in enumerate(ids):
        url = value if value.startswith("http") else f"https://hh.ru/resume/{value}"
        links.append(ExtractionLink(id=start + offset, url=url, title=f"Resume {value}"))
    return links


@pytest.fixture
def surface():
    """Recording fake surface with tab 1 active."""
    return FakeTabSurface()


@pytest.fixture
def registry():
    return FakeRegistry()


# === Test Environment Setup ===

@pytest.fixture(autouse=True)
def setup_test_env(tmp_path, monkeypatch):
    """Setup test environment variables."""
    monkeypatch.setenv("TESTING", "true")
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    yield


# === Markers ===

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "send: Message send orchestrator tests")
    config.addinivalue_line("markers", "extract: Resume batch extraction tests")
    config.addinivalue_line("markers", "protocol: Worker protocol tests")
    config.addinivalue_line("markers", "api: HTTP surface tests")
    config.addinivalue_line("markers", "resilience: Failure mode tests")
