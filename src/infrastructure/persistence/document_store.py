"""
infrastructure.persistence.document_store - SQLite document store.

Local implementation of the DocumentStore port: JSON documents addressed
by slash-separated paths (``chats/{id}/messages/{mid}``), dotted field
updates with Increment / ArrayUnion / SERVER_TIMESTAMP transforms, write
batches committed in one transaction, and in-process live subscriptions.

Subscriptions re-read their full snapshot after every committed write that
touches their collection (or document) and hand it to the callback from a
dedicated task, so deliveries for one listener never overlap. Listeners
only see writes made through the same store instance.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import json
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional
from uuid import uuid4

from domain.exceptions import DocumentNotFoundError, RepositoryError
from domain.models import (
    SERVER_TIMESTAMP,
    ArrayUnion,
    Document,
    Increment,
    OrderBy,
    QueryFilter,
    get_field,
)
from infrastructure.persistence.connection import AsyncSQLiteConnection

logger = logging.getLogger(__name__)


def split_path(path: str) -> tuple[str, str]:
    """Split a document path into (collection path, document id)."""
    parts = [p for p in path.strip("/").split("/") if p]
    if len(parts) < 2 or len(parts) % 2:
        raise ValueError(f"Not a document path: {path!r}")
    return "/".join(parts[:-1]), parts[-1]


def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class MonotonicClock:
    """UTC wall clock that never returns the same instant twice."""

    def __init__(self) -> None:
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last is not None and now <= self._last:
            now = self._last + timedelta(microseconds=1)
        self._last = now
        return now


def resolve_value(value: Any, existing: Any, stamp: str) -> Any:
    """Turn field transforms and rich types into plain JSON values."""
    if value is SERVER_TIMESTAMP:
        return stamp
    if isinstance(value, Increment):
        base = existing if isinstance(existing, (int, float)) and not isinstance(existing, bool) else 0
        return base + value.amount
    if isinstance(value, ArrayUnion):
        result = list(existing) if isinstance(existing, list) else []
        for item in value.values:
            if item not in result:
                result.append(item)
        return result
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, dict):
        nested = existing if isinstance(existing, dict) else {}
        return {k: resolve_value(v, nested.get(k), stamp) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_value(v, None, stamp) for v in value]
    return value


def apply_update(data: dict[str, Any], partial: dict[str, Any], stamp: str) -> dict[str, Any]:
    """Apply a dotted-path partial update to a copy of *data*."""
    result = copy.deepcopy(data)
    for dotted, value in partial.items():
        parts = dotted.split(".")
        target = result
        for part in parts[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        target[parts[-1]] = resolve_value(value, target.get(parts[-1]), stamp)
    return result


def order_documents(docs: list[Document], order_by: Optional[OrderBy]) -> list[Document]:
    if order_by is None:
        return sorted(docs, key=lambda d: d.id)
    present = [d for d in docs if get_field(d.data, order_by.field) is not None]
    missing = [d for d in docs if get_field(d.data, order_by.field) is None]
    present.sort(
        key=lambda d: (get_field(d.data, order_by.field), d.id),
        reverse=order_by.descending,
    )
    return present + missing


# ---------------------------------------------------------------------------
# Live listeners
# ---------------------------------------------------------------------------

class StoreListener:
    """One live subscription. Doubles as the Subscription handle."""

    def __init__(
        self,
        store: SQLiteDocumentStore,
        *,
        collection: Optional[str],
        path: Optional[str],
        fetch: Callable[[], Awaitable[Any]],
        on_change: Callable[[Any], Any],
        on_error: Optional[Callable[[Exception], Any]] = None,
    ):
        self._store = store
        self.collection = collection
        self.path = path
        self._fetch = fetch
        self._on_change = on_change
        self._on_error = on_error
        self._queue: asyncio.Queue[None] = asyncio.Queue()
        self._busy = False
        self._active = True
        self._task = asyncio.get_running_loop().create_task(self._run())

    @property
    def active(self) -> bool:
        return self._active

    @property
    def task(self) -> asyncio.Task:
        return self._task

    def matches(self, collection: str, path: str) -> bool:
        if self.path is not None:
            return self.path == path
        return self.collection == collection

    def notify(self) -> None:
        # Coalesce: one pending refresh already covers every write so far.
        if self._active and self._queue.empty():
            self._queue.put_nowait(None)

    def close(self) -> None:
        """Stop delivering. A delivery already in progress may finish."""
        if not self._active:
            return
        self._active = False
        self._store._listeners.discard(self)
        if not self._busy:
            self._task.cancel()

    async def _run(self) -> None:
        while self._active:
            await self._queue.get()
            if not self._active:
                break
            self._busy = True
            try:
                snapshot = await self._fetch()
                if self._active:
                    result = self._on_change(snapshot)
                    if inspect.isawaitable(result):
                        await result
            except RepositoryError as exc:
                await self._report(exc)
            except Exception:
                logger.exception(
                    "Subscriber callback failed for %s", self.path or self.collection,
                )
            finally:
                self._busy = False

    async def _report(self, exc: RepositoryError) -> None:
        """Hand a failed refresh to the subscriber; the next write retries it."""
        if self._on_error is None or not self._active:
            logger.error(
                "Snapshot refresh failed for %s", self.path or self.collection,
                exc_info=exc,
            )
            return
        logger.warning(
            "Snapshot refresh failed for %s: %s", self.path or self.collection, exc,
        )
        try:
            result = self._on_error(exc)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(
                "Error callback failed for %s", self.path or self.collection,
            )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class SQLiteWriteBatch:
    """Writes committed together in a single SQLite transaction."""

    def __init__(self, store: SQLiteDocumentStore):
        self._store = store
        self._ops: list[tuple[str, str, dict[str, Any]]] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._ops)

    def set(self, path: str, data: dict[str, Any]) -> None:
        split_path(path)
        self._ops.append(("set", path, data))

    def update(self, path: str, partial: dict[str, Any]) -> None:
        split_path(path)
        self._ops.append(("update", path, partial))

    async def commit(self) -> None:
        if self._committed:
            raise RuntimeError("Write batch already committed.")
        self._committed = True
        if self._ops:
            await self._store._write(self._ops)


class SQLiteDocumentStore:
    """Async SQLite implementation of DocumentStore."""

    def __init__(self, connection: AsyncSQLiteConnection):
        self._conn = connection
        self._clock = MonotonicClock()
        self._write_lock = asyncio.Lock()
        self._listeners: set[StoreListener] = set()

    def new_id(self) -> str:
        return uuid4().hex[:20]

    # -- writes ----------------------------------------------------------

    async def create_document(self, collection_path: str, data: dict[str, Any]) -> str:
        doc_id = self.new_id()
        await self._write([("set", f"{collection_path}/{doc_id}", data)])
        return doc_id

    async def update_document(self, path: str, partial: dict[str, Any]) -> None:
        await self._write([("update", path, partial)])

    async def set_document(self, path: str, data: dict[str, Any]) -> None:
        await self._write([("set", path, data)])

    def batch(self) -> SQLiteWriteBatch:
        return SQLiteWriteBatch(self)

    async def _write(self, ops: list[tuple[str, str, dict[str, Any]]]) -> None:
        touched: list[tuple[str, str]] = []
        async with self._write_lock:
            async with self._conn.acquire() as conn:
                await conn.execute("BEGIN IMMEDIATE")
                for kind, path, payload in ops:
                    collection, doc_id = split_path(path)
                    stamp = to_iso(self._clock.now())
                    if kind == "set":
                        data = resolve_value(payload, None, stamp)
                    else:
                        rows = await conn.execute_fetchall(
                            "SELECT data FROM documents WHERE path = ?", (path,),
                        )
                        if not rows:
                            raise DocumentNotFoundError(path)
                        data = apply_update(json.loads(rows[0]["data"]), payload, stamp)
                    await conn.execute(
                        """INSERT INTO documents
                           (path, collection, doc_id, data, created_at, updated_at)
                           VALUES (?, ?, ?, ?, ?, ?)
                           ON CONFLICT(path) DO UPDATE SET
                               data = excluded.data,
                               updated_at = excluded.updated_at""",
                        (path, collection, doc_id, json.dumps(data), stamp, stamp),
                    )
                    touched.append((collection, path))
        self._notify(touched)

    def _notify(self, touched: list[tuple[str, str]]) -> None:
        for listener in list(self._listeners):
            if any(listener.matches(collection, path) for collection, path in touched):
                listener.notify()

    # -- reads -----------------------------------------------------------

    async def get_document(self, path: str) -> Optional[dict[str, Any]]:
        split_path(path)
        async with self._conn.acquire() as conn:
            rows = await conn.execute_fetchall(
                "SELECT data FROM documents WHERE path = ?", (path,),
            )
            return json.loads(rows[0]["data"]) if rows else None

    async def query_documents(
        self,
        collection_path: str,
        filters: list[QueryFilter],
        order_by: Optional[OrderBy] = None,
    ) -> list[Document]:
        async with self._conn.acquire() as conn:
            rows = await conn.execute_fetchall(
                "SELECT doc_id, path, data FROM documents WHERE collection = ?",
                (collection_path,),
            )
        docs = [
            Document(id=r["doc_id"], path=r["path"], data=json.loads(r["data"]))
            for r in rows
        ]
        docs = [d for d in docs if all(f.matches(d.data) for f in filters)]
        return order_documents(docs, order_by)

    # -- subscriptions ---------------------------------------------------

    async def subscribe_query(
        self,
        collection_path: str,
        filters: list[QueryFilter],
        order_by: Optional[OrderBy],
        on_change: Callable[[list[Document]], Any],
        on_error: Optional[Callable[[Exception], Any]] = None,
    ) -> StoreListener:
        filters = list(filters)

        async def fetch() -> list[Document]:
            return await self.query_documents(collection_path, filters, order_by)

        return self._listen(
            collection=collection_path, path=None, fetch=fetch,
            on_change=on_change, on_error=on_error,
        )

    async def subscribe_document(
        self,
        path: str,
        on_change: Callable[[Optional[Document]], Any],
        on_error: Optional[Callable[[Exception], Any]] = None,
    ) -> StoreListener:
        _, doc_id = split_path(path)

        async def fetch() -> Optional[Document]:
            data = await self.get_document(path)
            return Document(id=doc_id, path=path, data=data) if data is not None else None

        return self._listen(
            collection=None, path=path, fetch=fetch,
            on_change=on_change, on_error=on_error,
        )

    def _listen(self, **kwargs: Any) -> StoreListener:
        listener = StoreListener(self, **kwargs)
        self._listeners.add(listener)
        listener.notify()
        return listener

    async def close(self) -> None:
        """Close every open listener and wait for their tasks to finish."""
        listeners = list(self._listeners)
        for listener in listeners:
            listener.close()
        if listeners:
            await asyncio.gather(*(l.task for l in listeners), return_exceptions=True)
