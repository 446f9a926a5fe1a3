"""
Database backends for feature flags and audit events.

Uses PostgreSQL for persistent storage (sqlite in tests). Each
operation runs in its own short transaction from the session factory,
so the registry can be shared across requests.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flagengine.utils.timezone import to_utc

from ..exceptions import (
    FlagAlreadyExistsError,
    FlagNotFoundError,
    StoreUnavailableError,
    VersionConflictError,
)
from ..interfaces import (
    AuditEvent,
    AuditFilter,
    AuditStore,
    Environment,
    FlagDefinition,
    FlagKind,
    FlagStore,
    TargetingRule,
    Variant,
)
from ..models import AuditEventModel, FeatureFlagModel

logger = structlog.get_logger()


@asynccontextmanager
async def _transaction(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Open a session + transaction, translating driver and pool failures."""
    try:
        async with session_factory() as session:
            async with session.begin():
                yield session
    except IntegrityError:
        raise
    except (DBAPIError, PoolTimeoutError, OSError) as e:
        logger.error("Flag store unavailable", error=str(e))
        raise StoreUnavailableError(f"Flag store unavailable: {e}") from e


class DatabaseFlagStore(FlagStore):
    """
    SQLAlchemy-backed flag storage.

    compare_and_swap is a single conditional UPDATE on the version
    column, so concurrent writers across processes cannot both win.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ============================================================
    # FLAG OPERATIONS
    # ============================================================

    async def get(self, environment: Environment, key: str) -> FlagDefinition | None:
        """Get a flag by key."""
        async with _transaction(self.session_factory) as session:
            model = await session.get(FeatureFlagModel, (environment.value, key))
            if not model:
                return None
            return self._model_to_flag(model)

    async def list(self, environment: Environment) -> list[FlagDefinition]:
        """List all flags in an environment."""
        query = (
            select(FeatureFlagModel)
            .where(FeatureFlagModel.environment == environment.value)
            .order_by(FeatureFlagModel.key)
        )
        async with _transaction(self.session_factory) as session:
            result = await session.execute(query)
            return [self._model_to_flag(m) for m in result.scalars().all()]

    async def insert(self, definition: FlagDefinition) -> FlagDefinition:
        """Insert a new flag."""
        try:
            async with _transaction(self.session_factory) as session:
                session.add(FeatureFlagModel(**self._flag_to_columns(definition)))
        except IntegrityError as e:
            raise FlagAlreadyExistsError(definition.environment, definition.key) from e
        return definition

    async def compare_and_swap(
        self,
        definition: FlagDefinition,
        expected_version: int,
    ) -> FlagDefinition:
        """Conditional UPDATE guarded by the version column."""
        columns = self._flag_to_columns(definition)
        env, key = columns.pop("environment"), columns.pop("key")
        columns.pop("created_at", None)

        query = (
            update(FeatureFlagModel)
            .where(
                FeatureFlagModel.environment == env,
                FeatureFlagModel.key == key,
                FeatureFlagModel.version == expected_version,
            )
            .values(**columns)
        )
        async with _transaction(self.session_factory) as session:
            result = await session.execute(query)
            if result.rowcount == 0:
                current = await session.scalar(
                    select(FeatureFlagModel.version).where(
                        FeatureFlagModel.environment == env,
                        FeatureFlagModel.key == key,
                    )
                )
                if current is None:
                    raise FlagNotFoundError(definition.environment, key)
                raise VersionConflictError(key, expected_version, current)
        return definition

    async def delete(self, environment: Environment, key: str) -> bool:
        """Delete a flag."""
        query = delete(FeatureFlagModel).where(
            FeatureFlagModel.environment == environment.value,
            FeatureFlagModel.key == key,
        )
        async with _transaction(self.session_factory) as session:
            result = await session.execute(query)
            return result.rowcount > 0

    # ============================================================
    # HELPERS
    # ============================================================

    def _flag_to_columns(self, flag: FlagDefinition) -> dict:
        data = flag.to_dict()
        data["created_at"] = flag.created_at
        data["updated_at"] = flag.updated_at
        # Unset timestamps fall back to the column defaults
        return {k: v for k, v in data.items() if not (k.endswith("_at") and v is None)}

    def _model_to_flag(self, model: FeatureFlagModel) -> FlagDefinition:
        """Convert SQLAlchemy model to dataclass."""
        return FlagDefinition(
            key=model.key,
            environment=Environment(model.environment),
            name=model.name,
            description=model.description or "",
            kind=FlagKind(model.kind),
            enabled=model.enabled,
            rollout_percentage=model.rollout_percentage,
            variants=tuple(Variant(**v) for v in model.variants or ()),
            rules=tuple(TargetingRule(**r) for r in model.rules or ()),
            version=model.version,
            owner=model.owner or "",
            created_at=to_utc(model.created_at) if model.created_at else None,
            updated_at=to_utc(model.updated_at) if model.updated_at else None,
        )


class DatabaseAuditStore(AuditStore):
    """SQLAlchemy-backed append-only audit storage."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def append(self, event: AuditEvent) -> AuditEvent:
        model = AuditEventModel(
            id=event.id,
            action=event.action,
            flag_key=event.flag_key,
            actor=event.actor,
            environment=Environment(event.environment).value,
            timestamp=event.timestamp,
            version=event.version,
            changes=event.changes,
        )
        async with _transaction(self.session_factory) as session:
            session.add(model)
            await session.flush()
            return self._model_to_event(model)

    async def count(self, filters: AuditFilter) -> int:
        query = self._apply_filters(select(func.count()).select_from(AuditEventModel), filters)
        async with _transaction(self.session_factory) as session:
            return (await session.scalar(query)) or 0

    async def fetch(
        self,
        filters: AuditFilter,
        limit: int,
        offset: int = 0,
    ) -> list[AuditEvent]:
        query = (
            self._apply_filters(select(AuditEventModel), filters)
            .order_by(AuditEventModel.sequence.desc())
            .limit(limit)
            .offset(offset)
        )
        async with _transaction(self.session_factory) as session:
            result = await session.execute(query)
            return [self._model_to_event(m) for m in result.scalars().all()]

    def _apply_filters(self, query, filters: AuditFilter):
        if filters.flag_key is not None:
            query = query.where(AuditEventModel.flag_key == filters.flag_key)
        if filters.environment is not None:
            query = query.where(AuditEventModel.environment == Environment(filters.environment).value)
        if filters.since is not None:
            query = query.where(AuditEventModel.timestamp >= filters.since)
        if filters.action is not None:
            query = query.where(AuditEventModel.action == filters.action)
        if filters.actor is not None:
            query = query.where(AuditEventModel.actor == filters.actor)
        return query

    def _model_to_event(self, model: AuditEventModel) -> AuditEvent:
        return AuditEvent(
            id=model.id,
            action=model.action,
            flag_key=model.flag_key,
            actor=model.actor,
            environment=Environment(model.environment),
            timestamp=to_utc(model.timestamp),
            version=model.version,
            changes=model.changes,
            sequence=model.sequence,
        )
