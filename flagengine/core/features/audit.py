"""
Audit Log - append-only change history for flags.

Storage order is append order. Readers page newest-first through
AuditQuery, which can be iterated any number of times and re-reads
the store each time.

If the store rejects an append, the event is kept in a pending buffer
and the error is raised to the caller. Pending events are written
before any newer event, so per-flag order is preserved once the store
recovers.
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Any, AsyncIterator
from uuid import uuid4

import structlog

from flagengine.utils.timezone import utc_now

from .exceptions import StoreUnavailableError
from .interfaces import (
    AuditEvent,
    AuditFilter,
    AuditStore,
    Environment,
    FlagDefinition,
)

logger = structlog.get_logger()

# Bookkeeping fields that change on every write and say nothing about intent
_IGNORED_FIELDS = {"version", "updated_at", "created_at"}


def compute_changes(old: dict, new: dict) -> dict[str, dict[str, Any]]:
    """
    Compute the differences between two dictionaries.

    Returns a dict of changed fields with old and new values.
    """
    changes = {}
    all_keys = set(old.keys()) | set(new.keys())

    for key in sorted(all_keys):
        old_value = old.get(key)
        new_value = new.get(key)

        if old_value != new_value:
            changes[key] = {"old": old_value, "new": new_value}

    return changes


def flag_changes(
    previous: FlagDefinition | None,
    current: FlagDefinition | None,
) -> dict[str, Any]:
    """Diff two snapshots for an audit record."""
    if previous is None and current is not None:
        return {"created": current.to_dict()}
    if current is None and previous is not None:
        return {"deleted": previous.to_dict()}

    old = {k: v for k, v in previous.to_dict().items() if k not in _IGNORED_FIELDS}
    new = {k: v for k, v in current.to_dict().items() if k not in _IGNORED_FIELDS}
    return compute_changes(old, new)


def new_event(
    *,
    action: str,
    flag_key: str,
    actor: str,
    environment: Environment,
    version: int | None = None,
    changes: dict[str, Any] | None = None,
) -> AuditEvent:
    """Build an event stamped with a fresh id and the current time."""
    return AuditEvent(
        id=str(uuid4()),
        action=action,
        flag_key=flag_key,
        actor=actor or "system",
        environment=Environment(environment),
        timestamp=utc_now(),
        version=version,
        changes=changes,
    )


# ============================================================
# PAGINATION
# ============================================================

@dataclass
class AuditPage:
    """One page of audit events, newest-first."""
    items: list[AuditEvent]
    total: int
    offset: int
    limit: int

    @property
    def has_next(self) -> bool:
        return self.offset + len(self.items) < self.total

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [e.to_dict() for e in self.items],
            "total": self.total,
            "offset": self.offset,
            "limit": self.limit,
            "hasNext": self.has_next,
        }


class AuditQuery:
    """
    Lazy, restartable view over matching audit events.

    Usage:
        async for event in audit_log.query(AuditFilter(flag_key="beta")):
            ...

        page = await audit_log.query(filters).page(offset=0, limit=20)
    """

    def __init__(self, store: AuditStore, filters: AuditFilter, page_size: int):
        self._store = store
        self.filters = filters
        self.page_size = page_size

    async def page(self, offset: int = 0, limit: int | None = None) -> AuditPage:
        limit = limit or self.page_size
        items = await self._store.fetch(self.filters, limit=limit, offset=offset)
        total = await self._store.count(self.filters)
        return AuditPage(items=items, total=total, offset=offset, limit=limit)

    async def count(self) -> int:
        return await self._store.count(self.filters)

    async def _iterate(self) -> AsyncIterator[AuditEvent]:
        offset = 0
        # Sequences only decrease while walking newest-first. Anything at or
        # above the last one yielded was appended mid-iteration and shifted
        # the offsets, so it is skipped.
        last: int | None = None
        while True:
            batch = await self._store.fetch(self.filters, limit=self.page_size, offset=offset)
            if not batch:
                return
            for event in batch:
                if last is not None and event.sequence is not None and event.sequence >= last:
                    continue
                last = event.sequence
                yield event
            if len(batch) < self.page_size:
                return
            offset += len(batch)

    def __aiter__(self) -> AsyncIterator[AuditEvent]:
        return self._iterate()


# ============================================================
# AUDIT LOG
# ============================================================

class AuditLog:
    """Append-only audit log over an AuditStore."""

    def __init__(self, store: AuditStore, page_size: int = 50):
        self.store = store
        self.page_size = page_size
        self._pending: deque[tuple[AuditEvent, asyncio.Future]] = deque()
        self._lock = asyncio.Lock()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def append(self, event: AuditEvent) -> AuditEvent:
        """
        Append an event after any pending ones.

        The event is queued before waiting for the store, so a caller
        cancelled mid-append still has it written by the next drain.

        Raises StoreUnavailableError if the store fails; the event is
        then kept queued and retried on the next append or flush_pending().
        """
        written = asyncio.get_running_loop().create_future()
        self._pending.append((event, written))
        async with self._lock:
            # Another appender's drain may already have written it
            if not written.done():
                await self._drain()
        return written.result()

    async def flush_pending(self) -> int:
        """Retry queued events. Returns how many were written."""
        async with self._lock:
            if not self._pending:
                return 0
            return await self._drain()

    async def _drain(self) -> int:
        count = 0
        while self._pending:
            event, written = self._pending[0]
            try:
                stored = await self.store.append(event)
            except StoreUnavailableError:
                logger.warning(
                    "Audit append failed, event queued",
                    event_id=event.id,
                    flag_key=event.flag_key,
                    pending=len(self._pending),
                )
                raise
            self._pending.popleft()
            if not written.done():
                written.set_result(stored)
            count += 1
            logger.info(
                "Audit event appended",
                event_id=event.id,
                action=event.action,
                flag_key=event.flag_key,
                environment=Environment(event.environment).value,
                actor=event.actor,
            )
        return count

    def query(self, filters: AuditFilter | None = None, page_size: int | None = None) -> AuditQuery:
        """Build a lazy newest-first query."""
        return AuditQuery(self.store, filters or AuditFilter(), page_size or self.page_size)
