"""
hh-relay Operator API - FastAPI Backend
Accepts send requests and extraction runs from the operator and drives the
browser tabs through the send orchestrator and the batch extractor.
"""

import logging
from datetime import datetime
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from api.config import config
from api.logging_config import setup_logging
from api.registry_client import RegistryClient
from core.errors import NoActiveTabError, RegistryError, RelayError
from core.models import ChatEntry, ExtractionStrategy, SendMode
from core.protocol import ListChatsRequest
from core.tabs import PageAutomationSurface, request_worker
from core.send_orchestrator import MessageSendOrchestrator, SendOrchestratorConfig
from core.batch_extractor import ResumeBatchExtractor, ExtractorConfig

logger = logging.getLogger(__name__)


# === Request Models ===

class SendChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chat_id: str = Field(..., alias="chatId", min_length=1)
    message_text: str = Field(..., alias="messageText", min_length=1)
    mode: SendMode = SendMode.CURRENT_TAB


class ExtractionRequest(BaseModel):
    count: Optional[int] = Field(None, gt=0)
    strategy: Optional[ExtractionStrategy] = None


async def list_visible_chats(surface: PageAutomationSurface, timeout: float):
    """Ask the worker in the active tab for the chats it can see."""
    tab_id = await surface.query_active_tab()
    if tab_id is None:
        raise NoActiveTabError("No active tab to read the chat list from")
    response = await request_worker(surface, tab_id, ListChatsRequest(), timeout)
    return [
        ChatEntry(chat_id=item.chat_id, name=item.name, url=item.url, is_active=item.is_active)
        for item in response.chats
    ]


def create_app(
    orchestrator: Optional[MessageSendOrchestrator] = None,
    extractor: Optional[ResumeBatchExtractor] = None,
    surface: Optional[PageAutomationSurface] = None,
    registry=None,
) -> FastAPI:
    """
    Build the operator API.

    Components that are passed in are used as-is and left running on
    shutdown; anything missing is built from ``api.config`` at startup
    (Playwright surface, Registry client, orchestrator, extractor).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = []
        app_surface = surface or (orchestrator.surface if orchestrator else None)
        app_registry = registry or (extractor.registry if extractor else None)

        if app_surface is None:
            setup_logging(log_dir=config.LOG_DIR)
            problems = config.validate()
            for problem in problems:
                logger.warning(f"Config: {problem}")

            from browser import PlaywrightTabSurface

            app_surface = PlaywrightTabSurface(
                headless=config.BROWSER_HEADLESS,
                user_data_dir=config.BROWSER_USER_DATA_DIR,
            )
            await app_surface.start()
            owned.append(app_surface.stop)
            logger.info("Browser surface started")

        if app_registry is None:
            app_registry = RegistryClient(config.REGISTRY_URL, config.REGISTRY_TIMEOUT_SECONDS)
            await app_registry.open()
            owned.append(app_registry.close)

        app_orchestrator = orchestrator
        if app_orchestrator is None:
            app_orchestrator = MessageSendOrchestrator(
                app_surface, SendOrchestratorConfig.from_app_config(config)
            )
            app_orchestrator.start()
            owned.append(app_orchestrator.stop)

        app_extractor = extractor or ResumeBatchExtractor(
            app_surface, app_registry, ExtractorConfig.from_app_config(config)
        )

        app.state.surface = app_surface
        app.state.registry = app_registry
        app.state.orchestrator = app_orchestrator
        app.state.extractor = app_extractor
        logger.info("Operator API ready")

        yield

        logger.info("Shutting down operator API...")
        for shutdown in reversed(owned):
            try:
                await shutdown()
            except Exception as e:
                logger.warning(f"Shutdown step failed: {e}")

    app = FastAPI(
        title="hh-relay Operator API",
        description="Chat message relay and resume extraction for hh.ru",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if config.DEBUG else None,
        redoc_url="/redoc" if config.DEBUG else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type"],
    )

    @app.get("/health")
    async def health():
        return {"success": True, "message": "pong", "timestamp": datetime.now().isoformat()}

    @app.get("/stats")
    async def stats(request: Request):
        return {
            "send": request.app.state.orchestrator.get_stats(),
            "extract": request.app.state.extractor.get_stats(),
        }

    # === Chats ===

    @app.post("/chats/send")
    async def send_chat(body: SendChatRequest, request: Request):
        try:
            ack = request.app.state.orchestrator.enqueue_send(body.chat_id, body.message_text, body.mode)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return ack

    @app.get("/chats/visible")
    async def visible_chats(request: Request):
        try:
            chats = await list_visible_chats(request.app.state.surface, config.WORKER_TIMEOUT_SECONDS)
        except NoActiveTabError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except RelayError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return {"chats": [chat.to_dict() for chat in chats]}

    @app.post("/chats/sync")
    async def sync_chats(request: Request):
        try:
            chats = await list_visible_chats(request.app.state.surface, config.WORKER_TIMEOUT_SECONDS)
            upserted = await request.app.state.registry.upsert_chats(chats) if chats else 0
        except NoActiveTabError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except RelayError as e:
            raise HTTPException(status_code=502, detail=str(e))
        logger.info(f"[Chats] Synced {upserted} chats to the registry")
        return {"found": len(chats), "upserted": upserted}

    # === Extraction ===

    @app.post("/extract/run")
    async def run_extraction(request: Request, body: Optional[ExtractionRequest] = None):
        body = body or ExtractionRequest()
        count = body.count or config.EXTRACT_DEFAULT_COUNT
        try:
            outcome = await request.app.state.extractor.run_batch(count, strategy=body.strategy)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except RegistryError as e:
            logger.error(f"[Extract] Registry unavailable: {e}")
            raise HTTPException(status_code=502, detail=f"Registry unavailable: {e}")
        return outcome.to_dict()

    return app


app = create_app()
