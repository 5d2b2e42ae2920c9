"""
Resource Registry - FastAPI service.

Stores resume links awaiting extraction, the extracted resume HTML, and chat
snapshots pushed by the relay. Backed by SQLite through api.database.
"""

import re
import logging
from datetime import datetime
from typing import List, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from api import database
from api.config import config
from api.logging_config import setup_logging

logger = logging.getLogger(__name__)

CHAT_URL_PATTERN = re.compile(r"/chat/(\d+)")


# === Request Models ===

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LinkIn(_CamelModel):
    url: str = Field(..., min_length=1)
    title: Optional[str] = None
    vacancy_id: Optional[str] = Field(None, alias="vacancyId")
    page: Optional[int] = None


class SaveLinksRequest(_CamelModel):
    vacancy_id: Optional[str] = Field(None, alias="vacancyId")
    links: List[LinkIn] = Field(default_factory=list)


class MarkProcessedRequest(_CamelModel):
    error: Optional[str] = None


class ResourceHtmlRequest(_CamelModel):
    resource_id: str = Field(..., alias="resourceId", min_length=1)
    source_url: str = Field(..., alias="sourceUrl")
    html_content: str = Field(..., alias="htmlContent")


class SnapshotMessage(_CamelModel):
    text: str
    me: bool = False
    ts: Optional[str] = None


class SnapshotData(_CamelModel):
    url: Optional[str] = None
    chat_id: Optional[str] = Field(None, alias="chatId")
    messages: List[SnapshotMessage] = Field(default_factory=list)


class ChatSnapshotRequest(_CamelModel):
    source: str = "hh-relay"
    timestamp: Optional[str] = None
    data: SnapshotData


class ChatIn(_CamelModel):
    chat_id: str = Field(..., alias="chatId", min_length=1)
    name: str
    url: Optional[str] = None


class BulkChatsRequest(_CamelModel):
    chats: List[ChatIn] = Field(default_factory=list)


def _link_out(row: dict) -> dict:
    return {
        "id": row["id"],
        "url": row["url"],
        "title": row.get("title"),
        "vacancyId": row.get("vacancy_id"),
        "processed": bool(row.get("processed")),
        "processedAt": row.get("processed_at"),
        "error": row.get("error"),
        "createdAt": row.get("created_at"),
    }


def _chat_out(row: dict) -> dict:
    return {
        "chatId": row["chat_id"],
        "name": row["name"],
        "url": row.get("url"),
        "messageCount": row.get("message_count", 0),
        "lastMessageTime": row.get("last_message_time"),
        "updatedAt": row.get("updated_at"),
    }


def create_registry_app(db_path: Optional[str] = None, configure_logging: bool = False) -> FastAPI:
    """Build the Registry app; ``db_path`` overrides DATABASE_PATH."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if configure_logging:
            setup_logging("hh_relay_registry", log_dir=config.LOG_DIR)
        if db_path is not None:
            database.set_database_path(db_path)
        await database.init_database()
        logger.info(f"Registry database ready at {database.DB_PATH}")
        yield
        logger.info("Registry shutting down")

    app = FastAPI(
        title="hh-relay Resource Registry",
        description="Resume links, resume HTML and chat snapshots",
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
        return {"status": "running", "timestamp": datetime.now().isoformat()}

    # === Links ===

    @app.post("/links")
    async def save_links(request: SaveLinksRequest):
        payload = [link.model_dump(by_alias=True) for link in request.links]
        inserted = await database.save_resume_links(payload, vacancy_id=request.vacancy_id)
        logger.info(f"[Registry] Saved {inserted} resume links")
        return {"inserted": inserted}

    @app.get("/links/unprocessed")
    async def unprocessed_links(limit: int = Query(50, ge=1, le=config.EXTRACT_MAX_BATCH_SIZE)):
        rows = await database.get_unprocessed_links(limit)
        return {"links": [_link_out(row) for row in rows]}

    @app.post("/links/{link_id}/processed")
    async def mark_processed(link_id: int, request: Optional[MarkProcessedRequest] = None):
        error = request.error if request else None
        if not await database.mark_link_processed(link_id, error=error):
            raise HTTPException(status_code=404, detail=f"Link {link_id} not found")
        if error:
            logger.info(f"[Registry] Link {link_id} processed with error: {error}")
        return {"ok": True, "id": link_id, "processed": True, "error": error}

    # === Resume HTML ===

    @app.post("/resource/html")
    async def upsert_resource_html(request: ResourceHtmlRequest):
        result = await database.upsert_resume_html(
            request.resource_id, request.source_url, request.html_content
        )
        logger.info(
            f"[Registry] {'Stored' if result['created'] else 'Updated'} resume "
            f"{request.resource_id} ({len(request.html_content)} bytes)"
        )
        return result

    @app.get("/resource/html/stats")
    async def resource_html_stats():
        return await database.get_html_stats()

    # === Chats ===

    @app.post("/chats/snapshot")
    async def chat_snapshot(request: ChatSnapshotRequest):
        chat_id = request.data.chat_id
        if not chat_id and request.data.url:
            match = CHAT_URL_PATTERN.search(request.data.url)
            chat_id = match.group(1) if match else None
        if not chat_id:
            raise HTTPException(status_code=400, detail="Snapshot has no chatId and no /chat/<id> url")

        stored = await database.save_chat_snapshot(
            chat_id, request.data.url, [m.model_dump() for m in request.data.messages]
        )
        return {"chatId": chat_id, "messages": stored}

    @app.post("/chats/bulk")
    async def bulk_chats(request: BulkChatsRequest):
        upserted = await database.upsert_chats([c.model_dump() for c in request.chats])
        return {"upserted": upserted}

    @app.get("/chats")
    async def list_chats():
        rows = await database.list_chats()
        return {"chats": [_chat_out(row) for row in rows]}

    return app


app = create_registry_app(configure_logging=True)
