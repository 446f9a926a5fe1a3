"""
Flag Registry - versioned, concurrency-safe flag storage.

Reads return immutable snapshots and never take a lock. Writes are
serialized per (environment, key) with an asyncio.Lock, so writes to
different flags proceed in parallel. Each write is an optimistic
check-version -> mutate -> validate -> commit sequence; the commit is
a compare-and-swap in the backing store, so a second registry instance
sharing the same database still cannot lose an update.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import AsyncIterator, Awaitable, Callable

import structlog

from flagengine.utils.timezone import utc_now

from .exceptions import (
    FlagNotFoundError,
    StoreUnavailableError,
    VersionConflictError,
)
from .interfaces import Environment, FlagDefinition, FlagStore
from .validation import validate_definition

logger = structlog.get_logger()

Mutator = Callable[[FlagDefinition], FlagDefinition]
CommitHook = Callable[[FlagDefinition | None, FlagDefinition | None], Awaitable[None]]


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class FlagRegistry:
    """
    Keyed store of flag definitions: (environment, key) -> FlagDefinition.

    Usage:
        registry = FlagRegistry(MemoryFlagStore())
        flag = await registry.create(FlagDefinition(key="beta", ...))
        flag = await registry.apply_update(
            flag.environment, flag.key, flag.version,
            lambda f: replace(f, rollout_percentage=50),
        )
    """

    def __init__(self, store: FlagStore):
        self.store = store
        self._locks: dict[tuple[Environment, str], _KeyLock] = {}

    @asynccontextmanager
    async def _locked(self, environment: Environment, key: str) -> AsyncIterator[None]:
        """
        Hold the write lock for one (environment, key).

        Entries live only while some writer holds or waits on them, so
        deleted and never-created keys leave nothing behind.
        """
        lock_key = (Environment(environment), key)
        entry = self._locks.get(lock_key)
        if entry is None:
            entry = self._locks[lock_key] = _KeyLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[lock_key]

    # ============================================================
    # READS
    # ============================================================

    async def get(
        self,
        environment: Environment,
        key: str,
        timeout: float | None = None,
    ) -> FlagDefinition | None:
        """
        Get a snapshot of a flag, or None.

        Raises asyncio.TimeoutError if timeout elapses first and
        StoreUnavailableError if the store cannot be reached.
        """
        lookup = self.store.get(Environment(environment), key)
        if timeout is None:
            return await lookup
        return await asyncio.wait_for(lookup, timeout)

    async def require(self, environment: Environment, key: str) -> FlagDefinition:
        """Get a snapshot or raise FlagNotFoundError."""
        flag = await self.get(environment, key)
        if flag is None:
            raise FlagNotFoundError(environment, key)
        return flag

    async def list(
        self,
        environment: Environment,
        query: str | None = None,
    ) -> list[FlagDefinition]:
        """
        List flags in an environment, sorted by key.

        query keeps flags whose name or key contains it, ignoring case.
        """
        flags = await self.store.list(Environment(environment))
        if query:
            needle = query.lower()
            flags = [f for f in flags if needle in f.name.lower() or needle in f.key.lower()]
        return flags

    async def stats(self, environment: Environment) -> dict[str, int]:
        """Enabled and total flag counts for an environment."""
        flags = await self.list(environment)
        return {"active": sum(1 for f in flags if f.enabled), "total": len(flags)}

    # ============================================================
    # WRITES
    # ============================================================

    async def create(
        self,
        definition: FlagDefinition,
        on_commit: CommitHook | None = None,
    ) -> FlagDefinition:
        """
        Create a flag at version 1.

        Raises InvalidConfigurationError or FlagAlreadyExistsError.
        """
        now = utc_now()
        flag = replace(definition, version=1, created_at=now, updated_at=now)
        validate_definition(flag)

        async with self._locked(flag.environment, flag.key):
            committed = await self.store.insert(flag)
            logger.info(
                "Feature flag created",
                flag_key=committed.key,
                environment=committed.environment.value,
                version=committed.version,
            )
            if on_commit:
                await on_commit(None, committed)
        return committed

    async def apply_update(
        self,
        environment: Environment,
        key: str,
        expected_version: int,
        mutator: Mutator,
        on_commit: CommitHook | None = None,
    ) -> FlagDefinition:
        """
        Optimistic-concurrency write.

        Args:
            environment: Flag environment
            key: Flag key
            expected_version: Version the caller last read
            mutator: Pure function from current snapshot to new definition
            on_commit: Awaited after commit, still holding the key's lock

        Raises:
            FlagNotFoundError, VersionConflictError,
            InvalidConfigurationError, StoreUnavailableError
        """
        environment = Environment(environment)

        async with self._locked(environment, key):
            current = await self.store.get(environment, key)
            if current is None:
                raise FlagNotFoundError(environment, key)
            if current.version != expected_version:
                logger.info(
                    "Feature flag version conflict",
                    flag_key=key,
                    environment=environment.value,
                    expected_version=expected_version,
                    current_version=current.version,
                )
                raise VersionConflictError(key, expected_version, current.version)

            proposed = mutator(current)
            # Identity and bookkeeping fields are owned by the registry.
            proposed = replace(
                proposed,
                key=current.key,
                environment=current.environment,
                created_at=current.created_at,
                version=current.version + 1,
                updated_at=utc_now(),
            )
            validate_definition(proposed)

            committed = await self.store.compare_and_swap(proposed, expected_version)
            logger.info(
                "Feature flag updated",
                flag_key=key,
                environment=environment.value,
                version=committed.version,
            )
            if on_commit:
                await on_commit(current, committed)
        return committed

    async def delete(
        self,
        environment: Environment,
        key: str,
        on_commit: CommitHook | None = None,
    ) -> FlagDefinition:
        """Delete a flag, returning its last snapshot."""
        environment = Environment(environment)

        async with self._locked(environment, key):
            current = await self.store.get(environment, key)
            if current is None or not await self.store.delete(environment, key):
                raise FlagNotFoundError(environment, key)
            logger.info(
                "Feature flag deleted",
                flag_key=key,
                environment=environment.value,
                version=current.version,
            )
            if on_commit:
                await on_commit(current, None)
        return current

    async def ping(self) -> bool:
        """Health check: True if the store answers."""
        try:
            await self.store.list(Environment.DEVELOPMENT)
        except StoreUnavailableError:
            return False
        return True
