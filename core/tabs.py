#!/usr/bin/env python3
"""
Page Automation Surface and the tab-lifecycle helpers shared by the send
orchestrator and the batch extractor.

The surface is the only way the core touches a browser. Tab ids are supplied
by the surface and are unique and stable for the lifetime of a tab.

Every helper here that crosses the surface boundary carries its own timeout,
so a surface that forgets to honour one cannot hang the caller.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .errors import RelayError, TabOperationError, WorkerProtocolError, WorkerTimeoutError
from .protocol import parse_worker_response

logger = logging.getLogger(__name__)

ReadyListener = Callable[[int, str], Awaitable[None]]

# Extra slack on top of a surface's own timeout before we stop waiting on it.
_BOUNDARY_GRACE_SECONDS = 1.0


class PageAutomationSurface(ABC):
    """Browser primitives the relay depends on."""

    @abstractmethod
    async def navigate(self, tab_id: int, url: str) -> None:
        """Point an existing tab at ``url``."""

    @abstractmethod
    async def wait_for_load(self, tab_id: int, timeout: float) -> bool:
        """
        Wait for the tab to report load-complete.

        Never raises. Returns False when the timeout elapsed first.
        """

    @abstractmethod
    async def inject(self, tab_id: int, script_ref: str) -> None:
        """Inject the worker script into the tab."""

    @abstractmethod
    async def send_to_worker(self, tab_id: int, request: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        """Send a request to the tab's worker and return its raw reply."""

    @abstractmethod
    async def create_tab(self, url: str, active: bool = False) -> int:
        """Open a new tab at ``url`` and return its id."""

    @abstractmethod
    async def close_tab(self, tab_id: int) -> None:
        """Close a tab. Closing an already-closed tab is not an error."""

    @abstractmethod
    async def query_active_tab(self) -> Optional[int]:
        """Return the id of the active tab, if any."""

    @abstractmethod
    async def list_tabs(self) -> List[int]:
        """Return the ids of all open tabs."""

    @abstractmethod
    def set_ready_listener(self, listener: Optional[ReadyListener]) -> None:
        """Register the callback invoked when a worker announces readiness."""


async def wait_for_load(surface: PageAutomationSurface, tab_id: int, timeout: float) -> bool:
    """
    Wait for load-complete, proceeding anyway once ``timeout`` elapses.

    Load signals are unreliable on single-page apps, so a timeout is a
    warning, not a failure.
    """
    try:
        loaded = await asyncio.wait_for(
            surface.wait_for_load(tab_id, timeout),
            timeout + _BOUNDARY_GRACE_SECONDS,
        )
    except asyncio.TimeoutError:
        loaded = False
    except Exception as e:
        logger.warning(f"[Tabs] Tab {tab_id} load wait failed, proceeding anyway: {e}")
        return False

    if not loaded:
        logger.warning(f"[Tabs] Tab {tab_id} load timeout after {timeout:.1f}s, proceeding anyway")
    return bool(loaded)


async def inject_worker(surface: PageAutomationSurface, tab_id: int, script_ref: str, timeout: float) -> None:
    """Inject the worker script; raises TabOperationError if the tab went away."""
    try:
        await asyncio.wait_for(surface.inject(tab_id, script_ref), timeout)
    except asyncio.TimeoutError as e:
        raise TabOperationError(f"Injecting worker into tab {tab_id} timed out", tab_id) from e
    except RelayError:
        raise
    except Exception as e:
        raise TabOperationError(f"Injecting worker into tab {tab_id} failed: {e}", tab_id) from e
    logger.debug(f"[Tabs] Worker injected into tab {tab_id}")


async def prepare_tab(
    surface: PageAutomationSurface,
    tab_id: int,
    script_ref: str,
    load_timeout: float,
    inject_timeout: float,
) -> bool:
    """Wait for load (best effort) then inject the worker. Returns whether load was observed."""
    loaded = await wait_for_load(surface, tab_id, load_timeout)
    await inject_worker(surface, tab_id, script_ref, inject_timeout)
    return loaded


async def navigate_tab(surface: PageAutomationSurface, tab_id: int, url: str, timeout: float) -> None:
    try:
        await asyncio.wait_for(surface.navigate(tab_id, url), timeout)
    except asyncio.TimeoutError as e:
        raise TabOperationError(f"Navigating tab {tab_id} to {url} timed out", tab_id) from e
    except RelayError:
        raise
    except Exception as e:
        raise TabOperationError(f"Navigating tab {tab_id} to {url} failed: {e}", tab_id) from e


async def open_tab(surface: PageAutomationSurface, url: str, active: bool, timeout: float) -> int:
    try:
        return await asyncio.wait_for(surface.create_tab(url, active=active), timeout)
    except asyncio.TimeoutError as e:
        raise TabOperationError(f"Opening tab for {url} timed out") from e
    except RelayError:
        raise
    except Exception as e:
        raise TabOperationError(f"Opening tab for {url} failed: {e}") from e


async def request_worker(
    surface: PageAutomationSurface,
    tab_id: int,
    request: Any,
    timeout: float,
):
    """
    Send a protocol request to a tab's worker and validate the reply.

    Raises:
        WorkerTimeoutError: no reply within ``timeout``
        WorkerProtocolError: malformed reply or ``success: false``
    """
    request_type = request.type
    try:
        raw = await asyncio.wait_for(
            surface.send_to_worker(tab_id, request.to_wire(), timeout),
            timeout,
        )
    except asyncio.TimeoutError as e:
        raise WorkerTimeoutError(request_type, timeout, tab_id) from e
    except RelayError:
        raise
    except Exception as e:
        raise WorkerProtocolError(f"Worker '{request_type}' in tab {tab_id} failed: {e}") from e

    response = parse_worker_response(request_type, raw)
    if not response.success:
        raise WorkerProtocolError(response.error or f"Worker reported failure for '{request_type}'")
    return response


async def close_tab_quietly(surface: PageAutomationSurface, tab_id: Optional[int], timeout: float = 5.0) -> None:
    """Close a tab, logging instead of raising."""
    if tab_id is None:
        return
    try:
        await asyncio.wait_for(surface.close_tab(tab_id), timeout)
        logger.debug(f"[Tabs] Closed tab {tab_id}")
    except Exception as e:
        logger.warning(f"[Tabs] Error closing tab {tab_id}: {e}")
