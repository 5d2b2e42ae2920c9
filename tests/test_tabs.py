"""
Tab lifecycle helper tests.
"""

import logging

import pytest

from conftest import FakeTabSurface
from core import tabs
from core.errors import TabOperationError, WorkerProtocolError, WorkerTimeoutError
from core.protocol import FetchHtmlRequest


class TestWaitForLoad:
    """Load waits never fail the caller."""

    @pytest.mark.asyncio
    async def test_loaded(self, surface):
        assert await tabs.wait_for_load(surface, 1, 0.1) is True

    @pytest.mark.asyncio
    async def test_timeout_logs_warning(self, surface, caplog):
        surface.load_result = False
        with caplog.at_level(logging.WARNING, logger="core.tabs"):
            assert await tabs.wait_for_load(surface, 1, 0.1) is False
        assert "load timeout" in caplog.text

    @pytest.mark.asyncio
    async def test_surface_ignoring_timeout_is_cut_off(self, surface, monkeypatch):
        monkeypatch.setattr(tabs, "_BOUNDARY_GRACE_SECONDS", 0.01)
        surface.load_delay = 5.0
        assert await tabs.wait_for_load(surface, 1, 0.02) is False

    @pytest.mark.asyncio
    async def test_surface_error_is_swallowed(self, surface):
        async def broken(tab_id, timeout):
            raise RuntimeError("Target closed")
        surface.wait_for_load = broken
        assert await tabs.wait_for_load(surface, 1, 0.1) is False


class TestTabOperations:

    @pytest.mark.asyncio
    async def test_inject_into_closed_tab_raises(self, surface):
        with pytest.raises(TabOperationError) as exc_info:
            await tabs.inject_worker(surface, 555, "worker.js", 0.5)
        assert exc_info.value.tab_id == 555

    @pytest.mark.asyncio
    async def test_open_tab_wraps_failure(self, surface):
        surface.fail_create = lambda url: True
        with pytest.raises(TabOperationError):
            await tabs.open_tab(surface, "https://hh.ru/chat/1", False, 0.5)

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, surface):
        tab_id = await tabs.open_tab(surface, "https://hh.ru/chat/1", False, 0.5)
        await tabs.close_tab_quietly(surface, tab_id)
        await tabs.close_tab_quietly(surface, tab_id)
        assert surface.closed_tabs == [tab_id]

    @pytest.mark.asyncio
    async def test_close_errors_are_logged_not_raised(self, surface, caplog):
        surface.fail_close = True
        with caplog.at_level(logging.WARNING, logger="core.tabs"):
            await tabs.close_tab_quietly(surface, 1)
        assert "Error closing tab 1" in caplog.text

    @pytest.mark.asyncio
    async def test_close_none_is_noop(self, surface):
        await tabs.close_tab_quietly(surface, None)
        assert surface.calls == []


class TestRequestWorker:
    """Every worker round-trip is bounded and validated."""

    @pytest.mark.asyncio
    async def test_success(self, surface):
        response = await tabs.request_worker(surface, 1, FetchHtmlRequest(url="https://hh.ru/resume/ab"), 0.5)
        assert "resume/ab" in response.html

    @pytest.mark.asyncio
    async def test_timeout(self):
        surface = FakeTabSurface()
        surface.worker_delay = 1.0
        with pytest.raises(WorkerTimeoutError) as exc_info:
            await tabs.request_worker(surface, 1, FetchHtmlRequest(url="u"), 0.05)
        assert exc_info.value.request_type == "fetch-html"
        assert exc_info.value.tab_id == 1

    @pytest.mark.asyncio
    async def test_explicit_failure(self, surface):
        surface.worker_handler = lambda tab_id, req: {"success": False, "error": "Page not ready"}
        with pytest.raises(WorkerProtocolError, match="Page not ready"):
            await tabs.request_worker(surface, 1, FetchHtmlRequest(url="u"), 0.5)

    @pytest.mark.asyncio
    async def test_no_reply(self, surface):
        surface.worker_handler = lambda tab_id, req: None
        with pytest.raises(WorkerProtocolError):
            await tabs.request_worker(surface, 1, FetchHtmlRequest(url="u"), 0.5)

    @pytest.mark.asyncio
    async def test_surface_exception_wrapped(self, surface):
        surface.worker_handler = lambda tab_id, req: RuntimeError("gone")
        with pytest.raises(WorkerProtocolError, match="gone"):
            await tabs.request_worker(surface, 1, FetchHtmlRequest(url="u"), 0.5)
