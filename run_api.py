"""
Run the dietitian chat REST + WebSocket API.

Usage:
    python run_api.py

Environment variables (all optional, also read from .env):
    DB_PATH                 SQLite database file path (default: chats.db)
    LOG_LEVEL               Logging level (default: INFO)
    JWT_SECRET              Secret used to verify bearer tokens (change in production!)
    JWT_ALGORITHM           JWT signature algorithm (default: HS256)
    DIETITIAN_DISPLAY_NAME  Name in welcome messages when the token has none
    CLOSING_MESSAGE         Text of the message appended when a chat is closed
    DEFAULT_AVAILABILITY    Availability of dietitians that never set one (default: online)
    API_HOST / API_PORT     Bind address (default: 0.0.0.0:8000)
"""

import sys
from pathlib import Path

# Ensure src/ is importable
sys.path.insert(0, str(Path(__file__).parent / "src"))

import uvicorn

from infrastructure.config import Settings

if __name__ == "__main__":
    config = Settings.from_env(project_root=Path(__file__).parent)
    uvicorn.run(
        "adapters.rest.app:app",
        host=config.api_host,
        port=config.api_port,
        reload=True,
    )
