"""
In-memory backends for feature flags and audit events.

For development and testing. Data is lost on restart.
"""

from dataclasses import replace
from typing import Iterable

from ..exceptions import (
    FlagAlreadyExistsError,
    FlagNotFoundError,
    VersionConflictError,
)
from ..interfaces import (
    AuditEvent,
    AuditFilter,
    AuditStore,
    Environment,
    FlagDefinition,
    FlagStore,
)


class MemoryFlagStore(FlagStore):
    """
    In-memory flag storage.

    Values are immutable snapshots, so handing them out needs no copy.
    Check-and-set methods contain no await points, which makes each of
    them atomic with respect to other coroutines on the event loop.
    """

    def __init__(self):
        self._flags: dict[tuple[Environment, str], FlagDefinition] = {}

    # ============================================================
    # FLAG OPERATIONS
    # ============================================================

    async def get(self, environment: Environment, key: str) -> FlagDefinition | None:
        """Get a flag snapshot by key."""
        return self._flags.get((environment, key))

    async def list(self, environment: Environment) -> list[FlagDefinition]:
        """List all flags in an environment."""
        return sorted(
            (f for (env, _), f in self._flags.items() if env == environment),
            key=lambda f: f.key,
        )

    async def insert(self, definition: FlagDefinition) -> FlagDefinition:
        """Insert a new flag."""
        slot = (definition.environment, definition.key)
        if slot in self._flags:
            raise FlagAlreadyExistsError(definition.environment, definition.key)
        self._flags[slot] = definition
        return definition

    async def compare_and_swap(
        self,
        definition: FlagDefinition,
        expected_version: int,
    ) -> FlagDefinition:
        """Replace the flag if the stored version matches."""
        slot = (definition.environment, definition.key)
        current = self._flags.get(slot)
        if current is None:
            raise FlagNotFoundError(definition.environment, definition.key)
        if current.version != expected_version:
            raise VersionConflictError(definition.key, expected_version, current.version)
        self._flags[slot] = definition
        return definition

    async def delete(self, environment: Environment, key: str) -> bool:
        """Delete a flag."""
        return self._flags.pop((environment, key), None) is not None

    # ============================================================
    # TEST HELPERS
    # ============================================================

    def clear(self) -> None:
        """Clear all data. Useful for testing."""
        self._flags.clear()

    def seed(self, flags: Iterable[FlagDefinition]) -> None:
        """Seed with initial flags, bypassing validation. Useful for testing."""
        for flag in flags:
            if flag.version < 1:
                flag = replace(flag, version=1)
            self._flags[(flag.environment, flag.key)] = flag


class MemoryAuditStore(AuditStore):
    """In-memory append-only audit storage, kept in insertion order."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append(self, event: AuditEvent) -> AuditEvent:
        stored = replace(event, sequence=len(self._events) + 1)
        self._events.append(stored)
        return stored

    async def count(self, filters: AuditFilter) -> int:
        return sum(1 for e in self._events if filters.matches(e))

    async def fetch(
        self,
        filters: AuditFilter,
        limit: int,
        offset: int = 0,
    ) -> list[AuditEvent]:
        newest_first = [e for e in reversed(self._events) if filters.matches(e)]
        return newest_first[offset:offset + limit]

    def clear(self) -> None:
        """Clear all data. Useful for testing."""
        self._events.clear()
