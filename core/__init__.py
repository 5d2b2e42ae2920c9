"""
Core components of the relay.

Modules:
- models: send tasks, pending deliveries, extraction links and outcomes
- protocol: worker request/response tagged unions
- tabs: Page Automation Surface interface and tab-lifecycle helpers
- send_orchestrator: single-consumer FIFO send queue
- batch_extractor: resume HTML batch extraction
- html_cleaner: strip scripts/styles/tracking from stored HTML
"""

from .errors import (
    RelayError,
    NoActiveTabError,
    InvalidResourceUrlError,
    TabOperationError,
    WorkerProtocolError,
    WorkerTimeoutError,
    RegistryError,
    RegistryUnavailableError,
)
from .models import (
    SendMode,
    SendTask,
    PendingDelivery,
    ChatEntry,
    ExtractionStrategy,
    ExtractionLink,
    ExtractionOutcome,
    LinkResult,
    extract_resume_id,
)
from .tabs import PageAutomationSurface
from .send_orchestrator import MessageSendOrchestrator, SendOrchestratorConfig
from .batch_extractor import ResumeBatchExtractor, ExtractorConfig
from .html_cleaner import clean_html, CleanedHtml

__all__ = [
    "RelayError",
    "NoActiveTabError",
    "InvalidResourceUrlError",
    "TabOperationError",
    "WorkerProtocolError",
    "WorkerTimeoutError",
    "RegistryError",
    "RegistryUnavailableError",
    "SendMode",
    "SendTask",
    "PendingDelivery",
    "ChatEntry",
    "ExtractionStrategy",
    "ExtractionLink",
    "ExtractionOutcome",
    "LinkResult",
    "extract_resume_id",
    "PageAutomationSurface",
    "MessageSendOrchestrator",
    "SendOrchestratorConfig",
    "ResumeBatchExtractor",
    "ExtractorConfig",
    "clean_html",
    "CleanedHtml",
]
