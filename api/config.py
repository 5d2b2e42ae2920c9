"""
Unified Configuration Module for hh-relay

All configuration settings are centralized here.
Import from this module: from api.config import config
"""

import os
from typing import List, Optional
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

VALID_STRATEGIES = ("shared-tab", "per-link")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class AppConfig:
    """Unified application configuration."""

    # === Operator API ===
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8090"))
    DEBUG: bool = _env_bool("DEBUG", "false")

    # === CORS Settings ===
    CORS_ORIGINS: List[str] = field(default_factory=lambda: [
        origin.strip() for origin in
        os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ])

    # === Resource Registry ===
    REGISTRY_HOST: str = os.getenv("REGISTRY_HOST", "0.0.0.0")
    REGISTRY_PORT: int = int(os.getenv("REGISTRY_PORT", "8091"))
    REGISTRY_URL: str = os.getenv("REGISTRY_URL", "http://localhost:8091")
    REGISTRY_TIMEOUT_SECONDS: float = float(os.getenv("REGISTRY_TIMEOUT_SECONDS", "10.0"))
    DATABASE_PATH: str = os.getenv("DATABASE_PATH", "./data/registry.db")

    # === Job site ===
    CHAT_URL_TEMPLATE: str = os.getenv("CHAT_URL_TEMPLATE", "https://hh.ru/chat/{chat_id}")
    WORKER_SCRIPT: str = os.getenv("WORKER_SCRIPT", "worker.js")

    # === Tabs / worker timeouts ===
    TAB_LOAD_TIMEOUT_SECONDS: float = float(os.getenv("TAB_LOAD_TIMEOUT_SECONDS", "10.0"))
    TAB_OP_TIMEOUT_SECONDS: float = float(os.getenv("TAB_OP_TIMEOUT_SECONDS", "15.0"))
    WORKER_TIMEOUT_SECONDS: float = float(os.getenv("WORKER_TIMEOUT_SECONDS", "30.0"))

    # === Send queue ===
    SEND_INTER_TASK_DELAY_SECONDS: float = float(os.getenv("SEND_INTER_TASK_DELAY_SECONDS", "1.0"))
    BACKGROUND_TAB_CLOSE_DELAY_SECONDS: float = float(os.getenv("BACKGROUND_TAB_CLOSE_DELAY_SECONDS", "2.0"))
    PENDING_MAX_AGE_SECONDS: float = float(os.getenv("PENDING_MAX_AGE_SECONDS", "3600"))  # 1h
    PENDING_SWEEP_INTERVAL_SECONDS: float = float(os.getenv("PENDING_SWEEP_INTERVAL_SECONDS", "300"))

    # === Resume extraction ===
    EXTRACT_MAX_BATCH_SIZE: int = int(os.getenv("EXTRACT_MAX_BATCH_SIZE", "1000"))
    EXTRACT_DEFAULT_COUNT: int = int(os.getenv("EXTRACT_DEFAULT_COUNT", "50"))
    EXTRACT_STRATEGY: str = os.getenv("EXTRACT_STRATEGY", "shared-tab")
    EXTRACT_MAX_OPEN_TABS: int = int(os.getenv("EXTRACT_MAX_OPEN_TABS", "3"))
    EXTRACT_LINK_DELAY_SECONDS: float = float(os.getenv("EXTRACT_LINK_DELAY_SECONDS", "1.0"))
    EXTRACT_ERROR_SAMPLE_SIZE: int = int(os.getenv("EXTRACT_ERROR_SAMPLE_SIZE", "5"))
    EXTRACT_CLEAN_HTML: bool = _env_bool("EXTRACT_CLEAN_HTML", "true")

    # === Browser ===
    BROWSER_HEADLESS: bool = _env_bool("BROWSER_HEADLESS", "false")
    BROWSER_USER_DATA_DIR: Optional[str] = os.getenv("BROWSER_USER_DATA_DIR")

    # === Paths ===
    LOG_DIR: str = os.getenv("LOG_DIR", "./logs")

    def validate(self) -> List[str]:
        """Validate configuration and return a list of problems."""
        problems = []

        if self.EXTRACT_STRATEGY not in VALID_STRATEGIES:
            problems.append(f"EXTRACT_STRATEGY must be one of {', '.join(VALID_STRATEGIES)}")
        if self.EXTRACT_MAX_BATCH_SIZE <= 0:
            problems.append("EXTRACT_MAX_BATCH_SIZE must be positive")
        if self.EXTRACT_MAX_OPEN_TABS <= 0:
            problems.append("EXTRACT_MAX_OPEN_TABS must be positive")
        if not 0 < self.EXTRACT_DEFAULT_COUNT <= self.EXTRACT_MAX_BATCH_SIZE:
            problems.append("EXTRACT_DEFAULT_COUNT must be between 1 and EXTRACT_MAX_BATCH_SIZE")
        if "{chat_id}" not in self.CHAT_URL_TEMPLATE:
            problems.append("CHAT_URL_TEMPLATE must contain {chat_id}")
        for name in ("TAB_LOAD_TIMEOUT_SECONDS", "TAB_OP_TIMEOUT_SECONDS", "WORKER_TIMEOUT_SECONDS"):
            if getattr(self, name) <= 0:
                problems.append(f"{name} must be positive")

        return problems


# Global config instance
config = AppConfig()


def get_config() -> AppConfig:
    """Get the application configuration."""
    return config
