"""
application.context - Viewer-scoped session context.

Every controller receives the identity of the party it acts for
explicitly. A client tab and a dietitian tab get two different
SessionContext instances; nothing is shared through globals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import uuid4

from domain.models import SenderRole


@dataclass
class SessionContext:
    """Per-session context passed to the chat controllers.

    Attributes:
        user_id:       Authenticated user id (provided by the adapter).
        role:          Which side of a chat this user is on.
        display_name:  Name used in synthesized dietitian messages.
        session_id:    Unique per viewer session, for tracing/logging.
    """
    user_id: str
    role: SenderRole
    display_name: str = ""
    session_id: str = field(default_factory=lambda: uuid4().hex)
