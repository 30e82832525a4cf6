"""
domain.models - Value objects for the chat synchronization engine.

These are immutable data containers with no dependencies on infrastructure
(no SQLite, no FastAPI). Enum values are the exact strings stored in
documents, so they double as the wire vocabulary.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class ChatStatus(str, Enum):
    """Lifecycle of a chat. CLOSED is terminal."""
    WAITING = "waiting"
    ACTIVE = "active"
    CLOSED = "closed"

    @property
    def is_open(self) -> bool:
        return self is not ChatStatus.CLOSED


OPEN_STATUSES: tuple[ChatStatus, ...] = (ChatStatus.ACTIVE, ChatStatus.WAITING)


class SenderRole(str, Enum):
    """Which side of the conversation authored a message."""
    CLIENT = "client"
    DIETITIAN = "dietitian"

    @property
    def other(self) -> SenderRole:
        if self is SenderRole.CLIENT:
            return SenderRole.DIETITIAN
        return SenderRole.CLIENT


class MessageKind(str, Enum):
    PLAIN = "plain"
    PLAN_SUGGESTION = "plan_suggestion"


class ChatAction(str, Enum):
    """Actions accepted by the chat state machine."""
    ACCEPT = "accept"
    RESPOND = "respond"
    CLOSE = "close"
    SEND = "send"


class Availability(str, Enum):
    """A dietitian's self-reported presence flag."""
    ONLINE = "online"
    BUSY = "busy"
    OFFLINE = "offline"


# ---------------------------------------------------------------------------
# Unread counters
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UnreadCount:
    """Two independent counters, one per viewing role. Never negative."""
    client: int = 0
    dietitian: int = 0

    def __post_init__(self) -> None:
        if self.client < 0 or self.dietitian < 0:
            raise ValueError("unread counters must be >= 0")

    def for_role(self, role: SenderRole) -> int:
        return self.client if role is SenderRole.CLIENT else self.dietitian

    def incremented(self, role: SenderRole, by: int = 1) -> UnreadCount:
        if role is SenderRole.CLIENT:
            return UnreadCount(client=self.client + by, dietitian=self.dietitian)
        return UnreadCount(client=self.client, dietitian=self.dietitian + by)

    def reset(self, role: SenderRole) -> UnreadCount:
        if role is SenderRole.CLIENT:
            return UnreadCount(client=0, dietitian=self.dietitian)
        return UnreadCount(client=self.client, dietitian=0)

    def to_dict(self) -> dict[str, int]:
        return {"client": self.client, "dietitian": self.dietitian}

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> UnreadCount:
        data = data or {}
        return cls(
            client=max(int(data.get("client", 0) or 0), 0),
            dietitian=max(int(data.get("dietitian", 0) or 0), 0),
        )


# ---------------------------------------------------------------------------
# Plan snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PlanSnapshot:
    """Immutable copy of a nutrition plan embedded in a suggestion message.

    ``days`` holds plain dicts as the plan editor stores them, e.g.
    ``{"dayName": "Monday", "calories": 1800, "protein": 120, ...,
    "workouts": [{"name": "Run", "duration": 30}]}``.
    """
    plan_id: str = ""
    name: str = ""
    description: str = ""
    days: tuple[dict[str, Any], ...] = field(default_factory=tuple)

    @classmethod
    def capture(cls, plan: dict[str, Any]) -> PlanSnapshot:
        """Deep-copy *plan* so later edits to the source never leak in."""
        plan = copy.deepcopy(plan)
        return cls(
            plan_id=str(plan.get("id", "") or plan.get("planId", "") or ""),
            name=plan.get("name", "") or "",
            description=plan.get("description", "") or "",
            days=tuple(plan.get("days") or ()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "planId": self.plan_id,
            "name": self.name,
            "description": self.description,
            "days": copy.deepcopy(list(self.days)),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlanSnapshot:
        return cls(
            plan_id=data.get("planId", "") or "",
            name=data.get("name", "") or "",
            description=data.get("description", "") or "",
            days=tuple(copy.deepcopy(data.get("days") or [])),
        )

    def summary(self) -> str:
        return f"Suggested nutrition plan: {self.name}"

    def render(self) -> str:
        """Human-readable message body for the suggestion."""
        lines = [f"Nutrition Plan Suggestion: {self.name}"]
        if self.description:
            lines += ["", self.description]
        if self.days:
            lines += ["", "Overview:"]
            for day in self.days:
                lines.append(f"{day.get('dayName', 'Day')}:")
                lines.append(f"  - {day.get('calories', 0)} calories")
                lines.append(
                    f"  - {day.get('protein', 0)}g protein, "
                    f"{day.get('carbs', 0)}g carbs, {day.get('fat', 0)}g fat"
                )
                if "waterIntake" in day:
                    lines.append(f"  - {day['waterIntake']} cups water")
                if "sleepHours" in day:
                    lines.append(f"  - {day['sleepHours']}h sleep")
                workouts = day.get("workouts") or []
                if workouts:
                    joined = ", ".join(
                        f"{w.get('name', '')} ({w.get('duration', 0)}min)"
                        for w in workouts
                    )
                    lines.append(f"  - Workouts: {joined}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Store query vocabulary
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class QueryFilter:
    """One ``where`` clause. Supported ops: ``==`` and ``in``."""
    field: str
    op: str
    value: Any

    def matches(self, data: dict[str, Any]) -> bool:
        actual = get_field(data, self.field)
        if self.op == "==":
            return actual == self.value
        if self.op == "in":
            return actual in self.value
        raise ValueError(f"Unsupported filter operator: {self.op!r}")


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class Increment:
    """Atomic numeric increment field transform."""
    amount: int = 1


@dataclass(frozen=True)
class ArrayUnion:
    """Append values to an array field, skipping ones already present."""
    values: tuple[Any, ...] = ()

    def __init__(self, *values: Any):
        object.__setattr__(self, "values", tuple(values))


class _ServerTimestamp:
    """Sentinel resolved by the store to its write time."""

    _instance: Optional[_ServerTimestamp] = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Document:
    """A stored document as returned by queries and subscriptions."""
    id: str
    path: str
    data: dict[str, Any] = field(default_factory=dict)


def get_field(data: dict[str, Any], dotted: str) -> Any:
    """Read a dotted field path such as ``unreadCount.client``."""
    current: Any = data
    for part in dotted.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current
