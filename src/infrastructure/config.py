"""
infrastructure.config - Typed, injectable configuration.

A frozen dataclass that can be constructed from the environment (and an
optional ``.env`` file) or passed explicitly in tests.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from domain.chat_state import CLOSING_TEXT, DEFAULT_DIETITIAN_NAME


@dataclass(frozen=True)
class Settings:
    """Centralized configuration for the chat engine and its adapters.

    No module-level globals; construct via from_env() or pass explicitly
    in tests.
    """
    project_root: Path

    # Database
    db_path: str = "chats.db"

    # Logging
    log_level: str = "INFO"

    # JWT issued by the external auth provider; only verified here.
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"

    # Chat texts
    dietitian_display_name: str = DEFAULT_DIETITIAN_NAME
    closing_message: str = CLOSING_TEXT

    # Presence reported for dietitians that never set one
    default_availability: str = "online"

    # REST adapter
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    @classmethod
    def from_env(cls, project_root: Optional[Path] = None) -> Settings:
        """Build Settings from environment variables."""
        from dotenv import load_dotenv
        load_dotenv()

        root = project_root or Path(__file__).resolve().parent.parent.parent

        return cls(
            project_root=root,
            db_path=os.getenv("DB_PATH", "chats.db"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            jwt_secret=os.getenv("JWT_SECRET", "change-me-in-production"),
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            dietitian_display_name=os.getenv("DIETITIAN_DISPLAY_NAME", DEFAULT_DIETITIAN_NAME),
            closing_message=os.getenv("CLOSING_MESSAGE", CLOSING_TEXT),
            default_availability=os.getenv("DEFAULT_AVAILABILITY", "online"),
            api_host=os.getenv("API_HOST", "0.0.0.0"),
            api_port=int(os.getenv("API_PORT", "8000")),
        )
