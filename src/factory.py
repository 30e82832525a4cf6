"""
factory - Composition root for the dietitian chat engine.

Every adapter (CLI, REST, WebSocket) obtains its controllers from this
factory; modules below it receive their collaborators through their
constructors.

Usage:
    from factory import ServiceFactory
    from infrastructure.config import Settings

    config = Settings.from_env()
    factory = ServiceFactory(config)
    await factory.initialize()  # one-time startup

    ctx = SessionContext(user_id="u1", role=SenderRole.CLIENT)
    chats = factory.create_chat_service(ctx)
    chat_id = await chats.open_or_create_chat("d1", "Hi, I need help")

    await factory.shutdown()    # closes live subscriptions
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Union

from application.context import SessionContext
from application.services.authentication import AuthenticationService
from application.services.client_chat import ClientChatService
from application.services.dietitian_chat import DietitianChatService
from application.services.presence import PresenceService
from domain.models import Availability, SenderRole
from infrastructure.config import Settings
from infrastructure.persistence.chat_index_repo import DocumentChatIndexRepository
from infrastructure.persistence.chat_repo import DocumentChatRepository
from infrastructure.persistence.connection import AsyncSQLiteConnection
from infrastructure.persistence.document_store import SQLiteDocumentStore
from infrastructure.persistence.message_repo import DocumentMessageRepository
from infrastructure.persistence.migrations import run_migrations

logger = logging.getLogger(__name__)


class ServiceFactory:
    """Builds the store, the repositories and the per-session controllers.

    Call initialize() once at startup, then create controllers as needed.
    The document store is shared so that every controller sees the same
    live subscriptions.
    """

    def __init__(self, config: Settings):
        self._config = config
        self._connection = AsyncSQLiteConnection(config.db_path)
        self._store = SQLiteDocumentStore(self._connection)
        self._chat_repo = DocumentChatRepository(self._store)
        self._message_repo = DocumentMessageRepository(self._store)
        self._index_repo = DocumentChatIndexRepository(
            self._store, default_availability=self._default_availability(),
        )
        self._initialized = False

    @property
    def config(self) -> Settings:
        return self._config

    @property
    def store(self) -> SQLiteDocumentStore:
        return self._store

    async def initialize(self) -> None:
        """One-time startup: create the schema."""
        logger.info("Initializing ServiceFactory (db=%s)...", self._config.db_path)
        await run_migrations(self._connection)
        self._initialized = True
        logger.info("ServiceFactory ready")

    async def shutdown(self) -> None:
        """Close every live subscription still open."""
        await self._store.close()
        logger.info("ServiceFactory shut down")

    # ------------------------------------------------------------------
    # Service creation
    # ------------------------------------------------------------------

    def create_client_chat_service(self, ctx: SessionContext) -> ClientChatService:
        self._ensure_initialized()
        return ClientChatService(
            ctx,
            self._store,
            self._chat_repo,
            self._message_repo,
            self._index_repo,
            closing_text=self._config.closing_message,
        )

    def create_dietitian_chat_service(self, ctx: SessionContext) -> DietitianChatService:
        self._ensure_initialized()
        if not ctx.display_name:
            ctx = replace(ctx, display_name=self._config.dietitian_display_name)
        return DietitianChatService(
            ctx,
            self._store,
            self._chat_repo,
            self._message_repo,
            self._index_repo,
            closing_text=self._config.closing_message,
        )

    def create_chat_service(
        self, ctx: SessionContext,
    ) -> Union[ClientChatService, DietitianChatService]:
        """Pick the controller matching the session's role."""
        if ctx.role is SenderRole.DIETITIAN:
            return self.create_dietitian_chat_service(ctx)
        return self.create_client_chat_service(ctx)

    def create_authentication_service(self) -> AuthenticationService:
        return AuthenticationService(
            jwt_secret=self._config.jwt_secret,
            jwt_algorithm=self._config.jwt_algorithm,
        )

    def create_presence_service(self) -> PresenceService:
        self._ensure_initialized()
        return PresenceService(self._index_repo, default=self._default_availability())

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _default_availability(self) -> Availability:
        try:
            return Availability(self._config.default_availability)
        except ValueError:
            logger.warning(
                "Invalid DEFAULT_AVAILABILITY %r, using 'online'",
                self._config.default_availability,
            )
            return Availability.ONLINE

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError(
                "ServiceFactory not initialized. Call await factory.initialize() first."
            )
