"""
Shared fixtures for the chat engine tests.

Every test gets its own SQLite file under tmp_path and a fully initialized
ServiceFactory, so tests never share state.
"""
import sys
import os
import asyncio

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

import pytest
import pytest_asyncio

from application.context import SessionContext
from domain.models import SenderRole
from factory import ServiceFactory
from infrastructure.config import Settings

CLIENT_ID = "client-1"
DIETITIAN_ID = "diet-1"
JWT_SECRET = "test-secret"


class Recorder:
    """Callable that records every delivery and lets a test wait for one."""

    def __init__(self):
        self.items = []
        self._changed = asyncio.Event()

    def __call__(self, item):
        self.items.append(item)
        self._changed.set()

    @property
    def last(self):
        return self.items[-1] if self.items else None

    async def until(self, predicate=lambda item: True, timeout=3.0):
        """Wait until the latest delivery satisfies *predicate* and return it."""
        async def _wait():
            while True:
                if self.items and predicate(self.items[-1]):
                    return self.items[-1]
                self._changed.clear()
                await self._changed.wait()

        return await asyncio.wait_for(_wait(), timeout)


async def settle(rounds: int = 20) -> None:
    """Give listener tasks a chance to run pending deliveries."""
    for _ in range(rounds):
        await asyncio.sleep(0.01)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        project_root=tmp_path,
        db_path=str(tmp_path / "chats.db"),
        jwt_secret=JWT_SECRET,
    )


@pytest_asyncio.fixture
async def factory(settings):
    f = ServiceFactory(settings)
    await f.initialize()
    yield f
    await f.shutdown()


@pytest.fixture
def store(factory):
    return factory.store


@pytest.fixture
def client_service(factory):
    return factory.create_client_chat_service(
        SessionContext(user_id=CLIENT_ID, role=SenderRole.CLIENT),
    )


@pytest.fixture
def dietitian_service(factory):
    return factory.create_dietitian_chat_service(
        SessionContext(user_id=DIETITIAN_ID, role=SenderRole.DIETITIAN, display_name="Dr. Green"),
    )


@pytest.fixture
def presence_service(factory):
    return factory.create_presence_service()


@pytest.fixture
def recorder():
    return Recorder()
