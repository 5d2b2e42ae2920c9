#!/usr/bin/env python3
"""
Message Send Orchestrator

Serializes outbound chat messages into a single FIFO queue and delivers each
one by driving a browser tab to the conversation:

- current-tab: the active tab is navigated to the chat
- background-tab: a disposable inactive tab is opened, then closed after delivery

Delivery itself is deferred until the injected worker announces it is ready
on the conversation page (``handle_ready``). Until then the intent is kept as
a PendingDelivery keyed by tab id; stale intents are swept periodically.

Sends are best effort: ``enqueue_send`` only acknowledges acceptance, and
failures are visible in the logs and in ``get_stats()``.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Optional, Set

from .errors import NoActiveTabError, RelayError, TabOperationError
from .models import PendingDelivery, SendMode, SendTask
from .protocol import SendMessageRequest
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
class SendOrchestratorConfig:
    chat_url_template: str = "https://hh.ru/chat/{chat_id}"
    worker_script: str = "worker.js"
    inter_task_delay_seconds: float = 1.0
    load_timeout_seconds: float = 10.0
    tab_op_timeout_seconds: float = 15.0
    worker_timeout_seconds: float = 30.0
    background_close_delay_seconds: float = 2.0
    pending_max_age_seconds: float = 3600.0
    sweep_interval_seconds: float = 300.0

    @classmethod
    def from_app_config(cls, cfg) -> "SendOrchestratorConfig":
        return cls(
            chat_url_template=cfg.CHAT_URL_TEMPLATE,
            worker_script=cfg.WORKER_SCRIPT,
            inter_task_delay_seconds=cfg.SEND_INTER_TASK_DELAY_SECONDS,
            load_timeout_seconds=cfg.TAB_LOAD_TIMEOUT_SECONDS,
            tab_op_timeout_seconds=cfg.TAB_OP_TIMEOUT_SECONDS,
            worker_timeout_seconds=cfg.WORKER_TIMEOUT_SECONDS,
            background_close_delay_seconds=cfg.BACKGROUND_TAB_CLOSE_DELAY_SECONDS,
            pending_max_age_seconds=cfg.PENDING_MAX_AGE_SECONDS,
            sweep_interval_seconds=cfg.PENDING_SWEEP_INTERVAL_SECONDS,
        )


class MessageSendOrchestrator:
    """
    Single-consumer send queue.

    The consumer is level-triggered: it is started by the enqueue that finds
    it idle and exits once the queue drains.
    """

    def __init__(self, surface: PageAutomationSurface, config: Optional[SendOrchestratorConfig] = None):
        self.surface = surface
        self.config = config or SendOrchestratorConfig()

        self._queue: Deque[SendTask] = deque()
        self._processing = False
        self._consumer: Optional[asyncio.Task] = None

        self._pending: Dict[int, PendingDelivery] = {}
        self._delivering: Set[int] = set()
        self._closers: Set[asyncio.Task] = set()
        self._sweeper: Optional[asyncio.Task] = None

        self.stats = {
            "enqueued": 0,
            "executed": 0,
            "failed": 0,
            "delivered": 0,
            "delivery_failed": 0,
            "swept": 0,
            "consumer_starts": 0,
        }

        self.surface.set_ready_listener(self.handle_ready)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Start the periodic PendingDelivery sweep."""
        if self._sweeper and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(), name="send-orchestrator:sweeper")
        logger.info("[Send] Orchestrator started")

    async def stop(self):
        if self._sweeper:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        await self.join()
        if self._closers:
            await asyncio.gather(*list(self._closers), return_exceptions=True)
        logger.info("[Send] Orchestrator stopped")

    async def join(self):
        """Wait until the current consumer (if any) has drained the queue."""
        consumer = self._consumer
        if consumer and not consumer.done():
            await consumer

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def enqueue_send(self, chat_id: str, message_text: str, mode=SendMode.CURRENT_TAB) -> Dict[str, Any]:
        """
        Queue a message for delivery and return immediately.

        Not a coroutine: the processing flag is checked and set with no
        suspension point in between.
        """
        task = SendTask(chat_id=chat_id, message_text=message_text, mode=SendMode(mode))
        self._queue.append(task)
        self.stats["enqueued"] += 1
        logger.info(f"[Send] Queued {task.id} for chat {task.chat_id} ({task.mode.value}), queue length {len(self._queue)}")

        if not self._processing:
            self._processing = True
            self._start_consumer()

        return {"accepted": True, "taskId": task.id}

    def _start_consumer(self):
        self.stats["consumer_starts"] += 1
        self._consumer = asyncio.create_task(self._drain(), name="send-orchestrator:consumer")

    async def _drain(self):
        logger.debug("[Send] Consumer started")
        try:
            while self._queue:
                task = self._queue.popleft()
                await self._execute(task)
                # Backpressure between navigations
                await asyncio.sleep(self.config.inter_task_delay_seconds)
        finally:
            self._processing = False
            logger.debug("[Send] Queue drained")

    async def _execute(self, task: SendTask):
        started = time.time()
        try:
            if task.mode == SendMode.BACKGROUND_TAB:
                tab_id = await self._send_in_background_tab(task)
            else:
                tab_id = await self._send_in_current_tab(task)
            self.stats["executed"] += 1
            logger.info(
                f"[Send] {task.id} awaiting readiness in tab {tab_id} "
                f"({time.time() - started:.2f}s)"
            )
        except Exception as e:
            self.stats["failed"] += 1
            logger.error(f"[Send] {task.id} for chat {task.chat_id} failed: {e}")

    def chat_url(self, chat_id: str) -> str:
        return self.config.chat_url_template.format(chat_id=chat_id)

    async def _send_in_current_tab(self, task: SendTask) -> int:
        cfg = self.config
        try:
            tab_id = await asyncio.wait_for(self.surface.query_active_tab(), cfg.tab_op_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise TabOperationError("Querying the active tab timed out") from e
        if tab_id is None:
            raise NoActiveTabError("No active tab found")

        self._remember(PendingDelivery(
            tab_id=tab_id,
            chat_id=task.chat_id,
            message_text=task.message_text,
        ))
        logger.debug(f"[Send] Navigating tab {tab_id} to chat {task.chat_id}")
        await navigate_tab(self.surface, tab_id, self.chat_url(task.chat_id), cfg.tab_op_timeout_seconds)
        await prepare_tab(self.surface, tab_id, cfg.worker_script, cfg.load_timeout_seconds, cfg.tab_op_timeout_seconds)
        return tab_id

    async def _send_in_background_tab(self, task: SendTask) -> int:
        cfg = self.config
        tab_id = await open_tab(self.surface, self.chat_url(task.chat_id), False, cfg.tab_op_timeout_seconds)
        logger.debug(f"[Send] Background tab {tab_id} opened for chat {task.chat_id}")

        # The worker can only announce readiness after injection below, so
        # recording the intent right after tab creation cannot miss it.
        self._remember(PendingDelivery(
            tab_id=tab_id,
            chat_id=task.chat_id,
            message_text=task.message_text,
            disposable=True,
        ))
        try:
            await prepare_tab(self.surface, tab_id, cfg.worker_script, cfg.load_timeout_seconds, cfg.tab_op_timeout_seconds)
        except Exception:
            self._pending.pop(tab_id, None)
            await close_tab_quietly(self.surface, tab_id)
            raise
        return tab_id

    # ------------------------------------------------------------------
    # Pending deliveries
    # ------------------------------------------------------------------

    def _remember(self, pending: PendingDelivery):
        replaced = self._pending.get(pending.tab_id)
        if replaced is not None:
            logger.info(f"[Send] Tab {pending.tab_id} re-targeted from chat {replaced.chat_id} to {pending.chat_id}")
        self._pending[pending.tab_id] = pending

    @property
    def pending_deliveries(self) -> Dict[int, PendingDelivery]:
        return dict(self._pending)

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def is_processing(self) -> bool:
        return self._processing

    async def handle_ready(self, tab_id: int, chat_id: str):
        """Deliver the pending message for ``tab_id`` once its worker is ready."""
        pending = self._pending.get(tab_id)
        if pending is None:
            logger.debug(f"[Send] Ready from tab {tab_id} with nothing pending")
            return

        if pending.is_expired(self.config.pending_max_age_seconds):
            self._pending.pop(tab_id, None)
            logger.info(f"[Send] Dropped expired delivery for tab {tab_id} (chat {pending.chat_id})")
            return

        if pending.chat_id != str(chat_id):
            logger.debug(f"[Send] Tab {tab_id} ready on chat {chat_id}, waiting for chat {pending.chat_id}")
            return

        if tab_id in self._delivering:
            logger.debug(f"[Send] Delivery already in flight for tab {tab_id}")
            return

        self._delivering.add(tab_id)
        try:
            await request_worker(
                self.surface,
                tab_id,
                SendMessageRequest(chat_id=pending.chat_id, text=pending.message_text),
                self.config.worker_timeout_seconds,
            )
        except RelayError as e:
            self.stats["delivery_failed"] += 1
            logger.error(f"[Send] Delivery to chat {pending.chat_id} in tab {tab_id} failed: {e}")
            return
        finally:
            self._delivering.discard(tab_id)

        if self._pending.get(tab_id) is pending:
            del self._pending[tab_id]
        self.stats["delivered"] += 1
        logger.info(f"[Send] Message delivered to chat {pending.chat_id} in tab {tab_id}")

        if pending.disposable:
            self._schedule_close(tab_id, self.config.background_close_delay_seconds)

    def _schedule_close(self, tab_id: int, delay: float):
        async def _close_later():
            await asyncio.sleep(delay)
            await close_tab_quietly(self.surface, tab_id)

        closer = asyncio.create_task(_close_later(), name=f"send-orchestrator:close-tab-{tab_id}")
        self._closers.add(closer)
        closer.add_done_callback(self._closers.discard)

    async def sweep_pending(self, now: Optional[float] = None) -> int:
        """Remove deliveries older than the max age. Returns how many were removed."""
        now = time.time() if now is None else now
        expired = [
            pending for pending in self._pending.values()
            if pending.is_expired(self.config.pending_max_age_seconds, now)
        ]
        for pending in expired:
            self._pending.pop(pending.tab_id, None)
            logger.info(f"[Send] Swept stale delivery for tab {pending.tab_id} (chat {pending.chat_id})")
            if pending.disposable:
                await close_tab_quietly(self.surface, pending.tab_id)

        self.stats["swept"] += len(expired)
        return len(expired)

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.config.sweep_interval_seconds)
            try:
                await self.sweep_pending()
            except Exception as e:
                logger.error(f"[Send] Pending sweep failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "queue_size": len(self._queue),
            "processing": self._processing,
            "pending_deliveries": len(self._pending),
        }
