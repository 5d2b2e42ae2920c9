"""
Database module for the Resource Registry.
Implements SQLite persistence with async support.
"""

import os
from datetime import datetime
from typing import Optional, List, Dict, Any
from pathlib import Path
from contextlib import asynccontextmanager

import aiosqlite

# Database configuration
DB_PATH = Path(os.getenv("DATABASE_PATH", Path(__file__).parent.parent / "data" / "registry.db"))


def set_database_path(path) -> Path:
    """Point the module at another database file (tests, CLI overrides)."""
    global DB_PATH
    DB_PATH = Path(path)
    return DB_PATH


async def init_database():
    """Initialize the database schema."""
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(DB_PATH) as db:
        # Links to resumes waiting for extraction
        await db.execute("""
            CREATE TABLE IF NOT EXISTS resume_links (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                url TEXT NOT NULL UNIQUE,
                title TEXT,
                vacancy_id TEXT,
                page_number INTEGER,
                processed INTEGER NOT NULL DEFAULT 0,
                processed_at TIMESTAMP,
                error TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Extracted resume HTML, one row per resume id
        await db.execute("""
            CREATE TABLE IF NOT EXISTS resume_html_content (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                resource_id TEXT NOT NULL UNIQUE,
                source_url TEXT NOT NULL,
                html_content TEXT NOT NULL,
                content_size INTEGER,
                extracted_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Chats seen in the job site's chat list
        await db.execute("""
            CREATE TABLE IF NOT EXISTS chats (
                chat_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                url TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Messages from chat snapshots
        await db.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                chat_id TEXT NOT NULL,
                message_text TEXT NOT NULL,
                is_from_me INTEGER NOT NULL DEFAULT 0,
                timestamp TEXT,
                message_index INTEGER,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (chat_id) REFERENCES chats(chat_id) ON DELETE CASCADE
            )
        """)

        await db.execute("CREATE INDEX IF NOT EXISTS idx_resume_links_processed ON resume_links(processed)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_resume_links_vacancy_id ON resume_links(vacancy_id)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_messages_chat_id ON messages(chat_id)")

        await db.commit()


@asynccontextmanager
async def get_db():
    """Get a database connection."""
    db = await aiosqlite.connect(DB_PATH)
    db.row_factory = aiosqlite.Row
    try:
        yield db
    finally:
        await db.close()


def _now() -> str:
    return datetime.now().isoformat()


# Resume link operations
async def save_resume_links(links: List[Dict[str, Any]], vacancy_id: Optional[str] = None) -> int:
    """Insert links, updating title/vacancy of ones already known. Returns rows written."""
    written = 0
    async with get_db() as db:
        for link in links:
            url = (link.get("url") or "").strip()
            if not url:
                continue
            await db.execute(
                """INSERT INTO resume_links (url, title, vacancy_id, page_number)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(url) DO UPDATE SET
                       title = COALESCE(excluded.title, resume_links.title),
                       vacancy_id = COALESCE(excluded.vacancy_id, resume_links.vacancy_id)""",
                (url, link.get("title"), link.get("vacancyId") or vacancy_id, link.get("page")),
            )
            written += 1
        await db.commit()
    return written


async def get_unprocessed_links(limit: int = 50) -> List[Dict[str, Any]]:
    """Oldest unprocessed links that have not failed before."""
    async with get_db() as db:
        cursor = await db.execute(
            """SELECT * FROM resume_links
               WHERE processed = 0 AND error IS NULL
               ORDER BY created_at ASC, id ASC
               LIMIT ?""",
            (int(limit),),
        )
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]


async def get_link(link_id: int) -> Optional[Dict[str, Any]]:
    async with get_db() as db:
        cursor = await db.execute("SELECT * FROM resume_links WHERE id = ?", (int(link_id),))
        row = await cursor.fetchone()
        return dict(row) if row else None


async def mark_link_processed(link_id: int, error: Optional[str] = None) -> bool:
    """Mark a link processed, optionally with the error that stopped it."""
    async with get_db() as db:
        cursor = await db.execute(
            """UPDATE resume_links
               SET processed = 1, processed_at = ?, error = ?
               WHERE id = ?""",
            (_now(), error, int(link_id)),
        )
        await db.commit()
        return cursor.rowcount > 0


# Resume HTML operations
async def upsert_resume_html(resource_id: str, source_url: str, html_content: str) -> Dict[str, Any]:
    """Insert or overwrite the HTML stored for a resume id."""
    now = _now()
    async with get_db() as db:
        cursor = await db.execute(
            "SELECT id FROM resume_html_content WHERE resource_id = ?", (resource_id,)
        )
        existing = await cursor.fetchone()
        await db.execute(
            """INSERT INTO resume_html_content
                   (resource_id, source_url, html_content, content_size, extracted_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(resource_id) DO UPDATE SET
                   source_url = excluded.source_url,
                   html_content = excluded.html_content,
                   content_size = excluded.content_size,
                   updated_at = excluded.updated_at""",
            (resource_id, source_url, html_content, len(html_content), now, now),
        )
        await db.commit()
    return {"ok": True, "resourceId": resource_id, "created": existing is None}


async def get_resume_html(resource_id: str) -> Optional[Dict[str, Any]]:
    async with get_db() as db:
        cursor = await db.execute(
            "SELECT * FROM resume_html_content WHERE resource_id = ?", (resource_id,)
        )
        row = await cursor.fetchone()
        return dict(row) if row else None


async def get_html_stats() -> Dict[str, Any]:
    async with get_db() as db:
        cursor = await db.execute(
            """SELECT COUNT(*) AS total_records,
                      COALESCE(SUM(content_size), 0) AS total_bytes,
                      MAX(updated_at) AS last_extracted_at
               FROM resume_html_content"""
        )
        row = await cursor.fetchone()
        return {
            "totalRecords": row["total_records"],
            "totalBytes": row["total_bytes"],
            "lastExtractedAt": row["last_extracted_at"],
        }


# Chat operations
async def upsert_chats(chats: List[Dict[str, Any]]) -> int:
    now = _now()
    async with get_db() as db:
        for chat in chats:
            await db.execute(
                """INSERT INTO chats (chat_id, name, url, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(chat_id) DO UPDATE SET
                       name = excluded.name,
                       url = COALESCE(excluded.url, chats.url),
                       updated_at = excluded.updated_at""",
                (chat["chat_id"], chat["name"], chat.get("url"), now, now),
            )
        await db.commit()
    return len(chats)


async def save_chat_snapshot(chat_id: str, url: Optional[str], messages: List[Dict[str, Any]]) -> int:
    """Replace the stored messages of a chat with the given snapshot."""
    now = _now()
    async with get_db() as db:
        await db.execute(
            """INSERT INTO chats (chat_id, name, url, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(chat_id) DO UPDATE SET
                   url = COALESCE(excluded.url, chats.url),
                   updated_at = excluded.updated_at""",
            (chat_id, f"Chat {chat_id}", url, now, now),
        )
        await db.execute("DELETE FROM messages WHERE chat_id = ?", (chat_id,))
        for index, message in enumerate(messages):
            await db.execute(
                """INSERT INTO messages (chat_id, message_text, is_from_me, timestamp, message_index)
                   VALUES (?, ?, ?, ?, ?)""",
                (chat_id, message["text"], 1 if message.get("me") else 0, message.get("ts"), index),
            )
        await db.commit()
    return len(messages)


async def list_chats() -> List[Dict[str, Any]]:
    async with get_db() as db:
        cursor = await db.execute(
            """SELECT c.*,
                      COALESCE(m.message_count, 0) AS message_count,
                      m.last_message_time
               FROM chats c
               LEFT JOIN (
                   SELECT chat_id, COUNT(*) AS message_count, MAX(timestamp) AS last_message_time
                   FROM messages
                   GROUP BY chat_id
               ) m ON c.chat_id = m.chat_id
               ORDER BY c.updated_at DESC"""
        )
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]


async def get_chat_messages(chat_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    async with get_db() as db:
        cursor = await db.execute(
            """SELECT * FROM messages
               WHERE chat_id = ?
               ORDER BY message_index ASC
               LIMIT ?""",
            (chat_id, int(limit)),
        )
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]
