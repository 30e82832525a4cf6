"""
Shared FastAPI dependencies.

- get_factory(): returns the initialized ServiceFactory (set at startup).
- get_current_user(): JWT bearer token extraction and validation.
- get_chat_service(): the chat controller for the caller's role.
- domain_errors(): maps domain exceptions onto HTTP status codes.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Union

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from factory import ServiceFactory
from application.context import SessionContext
from application.services.client_chat import ClientChatService
from application.services.dietitian_chat import DietitianChatService
from domain.exceptions import (
    AuthenticationError,
    ChatAccessError,
    ChatNotFoundError,
    ChatValidationError,
    IllegalTransitionError,
    StoreUnavailableError,
)
from domain.models import SenderRole

# Module-level reference set by app lifespan
_factory: ServiceFactory | None = None


def set_factory(factory: ServiceFactory) -> None:
    global _factory
    _factory = factory


def get_factory() -> ServiceFactory:
    if _factory is None:
        raise RuntimeError("ServiceFactory not initialized.")
    return _factory


# --- JWT Bearer ---

_bearer_scheme = HTTPBearer()


@dataclass
class CurrentUser:
    """Extracted from JWT payload. Passed to route handlers."""
    user_id: str
    role: SenderRole
    display_name: str = ""

    def session(self) -> SessionContext:
        return SessionContext(
            user_id=self.user_id, role=self.role, display_name=self.display_name,
        )


def authenticate(token: str, factory: ServiceFactory) -> CurrentUser:
    """Verify *token*; raises AuthenticationError on failure."""
    ctx = factory.create_authentication_service().session_for(token)
    return CurrentUser(user_id=ctx.user_id, role=ctx.role, display_name=ctx.display_name)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    factory: ServiceFactory = Depends(get_factory),
) -> CurrentUser:
    """Validate JWT and return CurrentUser. Raises 401 on failure."""
    try:
        return authenticate(credentials.credentials, factory)
    except AuthenticationError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_dietitian(
    user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    if user.role is not SenderRole.DIETITIAN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only dietitians can do this.",
        )
    return user


async def get_chat_service(
    user: CurrentUser = Depends(get_current_user),
    factory: ServiceFactory = Depends(get_factory),
) -> Union[ClientChatService, DietitianChatService]:
    return factory.create_chat_service(user.session())


async def get_dietitian_service(
    user: CurrentUser = Depends(require_dietitian),
    factory: ServiceFactory = Depends(get_factory),
) -> DietitianChatService:
    return factory.create_dietitian_chat_service(user.session())


# --- Error mapping ---

@contextmanager
def domain_errors() -> Iterator[None]:
    """Translate domain exceptions raised inside the block into HTTPException."""
    try:
        yield
    except IllegalTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except ChatValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except ChatNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except ChatAccessError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
