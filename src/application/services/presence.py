"""
application.services.presence - Dietitian availability flag.

Persist-and-echo only. There is no heartbeat or expiry: a dietitian is
offline only after saying so, and the flag never affects chats.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Union

from domain.entities import ChatIndex
from domain.exceptions import ChatValidationError
from domain.models import Availability, SenderRole
from domain.ports import ChatIndexRepository, ErrorCallback, Subscription

logger = logging.getLogger(__name__)


class PresenceService:
    """Reads and writes the availability stored on dietitian rosters."""

    def __init__(
        self,
        index_repo: ChatIndexRepository,
        default: Availability = Availability.ONLINE,
    ):
        self._index_repo = index_repo
        self._default = default

    async def set_availability(
        self, dietitian_id: str, status: Union[Availability, str],
    ) -> Availability:
        try:
            availability = Availability(status)
        except ValueError:
            raise ChatValidationError(
                f"Unknown availability {status!r}; expected one of "
                f"{', '.join(a.value for a in Availability)}."
            ) from None
        await self._index_repo.set_availability(dietitian_id, availability)
        logger.info("Dietitian %s is now %s", dietitian_id, availability.value)
        return availability

    async def get_availability(self, dietitian_id: str) -> Availability:
        """Last written value, or the default for dietitians who never set one."""
        index = await self._index_repo.get(SenderRole.DIETITIAN, dietitian_id)
        if index is None or index.availability is None:
            return self._default
        return index.availability

    async def watch_availability(
        self,
        dietitian_id: str,
        on_change: Callable[[Availability], Any],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        def deliver(index: Optional[ChatIndex]) -> Any:
            if index is None or index.availability is None:
                return on_change(self._default)
            return on_change(index.availability)

        return await self._index_repo.subscribe(
            SenderRole.DIETITIAN, dietitian_id, deliver, on_error,
        )
