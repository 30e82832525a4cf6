"""
FastAPI application: REST and WebSocket adapter for the dietitian chat engine.

Usage:
    python run_api.py

Or directly:
    uvicorn adapters.rest.app:app --host 0.0.0.0 --port 8000 --reload
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Ensure src/ is on sys.path when invoked via uvicorn directly
_src_dir = Path(__file__).resolve().parent.parent.parent
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

from infrastructure.config import Settings
from factory import ServiceFactory
from adapters.rest.dependencies import set_factory
from adapters.rest.routers import chats, presence, chat_ws

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize ServiceFactory on startup, close live subscriptions on shutdown."""
    project_root = _src_dir.parent
    config = Settings.from_env(project_root=project_root)
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    factory = ServiceFactory(config)
    await factory.initialize()
    set_factory(factory)
    yield
    await factory.shutdown()


app = FastAPI(
    title="Dietitian Chat",
    version=__version__,
    description="Real-time chat between clients and dietitians.",
    lifespan=lifespan,
)

# CORS is permissive for development; restrict allow_origins in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(chats.router)
app.include_router(presence.router)
app.include_router(chat_ws.router)


@app.get("/health", tags=["health"])
async def health():
    return {"status": "ok", "version": __version__}
