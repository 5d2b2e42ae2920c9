#!/usr/bin/env python3
"""
Shared data models for the relay.

Send tasks and pending deliveries live only in memory; extraction links are
owned by the Resource Registry and only referenced here.
"""

import re
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import InvalidResourceUrlError


# ============== Enums ==============

class SendMode(str, Enum):
    """How a send task reaches its conversation."""
    CURRENT_TAB = "current-tab"
    BACKGROUND_TAB = "background-tab"


class ExtractionStrategy(str, Enum):
    """How the batch extractor uses tabs."""
    SHARED_TAB = "shared-tab"
    PER_LINK = "per-link"


# ============== Send side ==============

def _new_task_id() -> str:
    return f"msg_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class SendTask:
    """A unit of outbound chat work."""
    chat_id: str
    message_text: str
    mode: SendMode = SendMode.CURRENT_TAB
    created_at: float = field(default_factory=time.time)
    id: str = field(default_factory=_new_task_id)

    def __post_init__(self):
        if not self.chat_id or not str(self.chat_id).strip():
            raise ValueError("chat_id must be a non-empty string")
        if not self.message_text or not self.message_text.strip():
            raise ValueError("message_text must be a non-empty string")
        self.chat_id = str(self.chat_id).strip()
        self.mode = SendMode(self.mode)


@dataclass
class PendingDelivery:
    """An intent to send a message in a tab once its worker announces readiness."""
    tab_id: int
    chat_id: str
    message_text: str
    created_at: float = field(default_factory=time.time)
    disposable: bool = False  # tab was opened by us and should be closed after delivery

    def is_expired(self, max_age_seconds: float, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return (now - self.created_at) > max_age_seconds


@dataclass
class ChatEntry:
    """A chat visible in the job site's chat list."""
    chat_id: str
    name: str
    url: Optional[str] = None
    is_active: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chatId": self.chat_id,
            "name": self.name,
            "url": self.url,
            "isActive": self.is_active,
        }


# ============== Extraction side ==============

RESUME_ID_PATTERN = re.compile(r"/resume/([a-f0-9]+)")


def extract_resume_id(url: str) -> str:
    """
    Pull the resume identifier out of a resume URL.

    Raises:
        InvalidResourceUrlError: if the URL has no ``/resume/<hex>`` segment
    """
    match = RESUME_ID_PATTERN.search(url or "")
    if not match:
        raise InvalidResourceUrlError(url)
    return match.group(1)


@dataclass
class ExtractionLink:
    """A resume link waiting in the Resource Registry."""
    id: int
    url: str
    title: Optional[str] = None
    processed: bool = False
    processed_at: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractionLink":
        return cls(
            id=int(data["id"]),
            url=str(data["url"]),
            title=data.get("title"),
            processed=bool(data.get("processed", False)),
            processed_at=data.get("processedAt") or data.get("processed_at"),
            error=data.get("error"),
        )


@dataclass
class LinkResult:
    """What happened to one link in a batch."""
    link: ExtractionLink
    success: bool
    resource_id: Optional[str] = None
    error: Optional[str] = None
    duration_seconds: float = 0.0


@dataclass
class ExtractionOutcome:
    """Aggregate result of one batch run."""
    requested_count: int
    processed_count: int = 0
    succeeded_count: int = 0
    failed_count: int = 0
    error_samples: List[Dict[str, str]] = field(default_factory=list)
    max_error_samples: int = 5

    def record(self, result: LinkResult):
        self.processed_count += 1
        if result.success:
            self.succeeded_count += 1
            return
        self.failed_count += 1
        if len(self.error_samples) < self.max_error_samples:
            self.error_samples.append({
                "url": result.link.url,
                "error": result.error or "Unknown error",
            })

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requestedCount": self.requested_count,
            "processedCount": self.processed_count,
            "succeededCount": self.succeeded_count,
            "failedCount": self.failed_count,
            "errorSamples": list(self.error_samples),
        }
