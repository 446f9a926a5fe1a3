"""
Pytest fixtures for testing.

Provides:
- In-memory flag engine components (registry, audit log, engine, pipeline)
- Test client wired to an in-memory runtime
- SQLite-backed session factory for the database backends
- Flag factories and failing/slow stores for error paths
"""

import asyncio
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from flagengine.main import app
from flagengine.models.base import Base
from flagengine.models.database import init_db
from flagengine.core.features import (
    AuditLog,
    ChangePipeline,
    Environment,
    EvaluationEngine,
    FeatureRuntime,
    FlagDefinition,
    FlagKind,
    FlagRegistry,
    MemoryAuditStore,
    MemoryFlagStore,
    StoreUnavailableError,
    StubRiskAnalyzer,
    TargetingRule,
    Variant,
    get_feature_runtime,
)


# Test database URL (SQLite in-memory for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ============ Flag Factories ============


def boolean_flag(
    key: str = "beta_x",
    environment: Environment = Environment.PRODUCTION,
    enabled: bool = True,
    rollout_percentage: int = 100,
    rules: tuple[TargetingRule, ...] = (),
    **kwargs,
) -> FlagDefinition:
    """Build an unsaved boolean flag."""
    return FlagDefinition(
        key=key,
        environment=environment,
        name=kwargs.pop("name", key.replace("_", " ").title()),
        kind=FlagKind.BOOLEAN,
        enabled=enabled,
        rollout_percentage=rollout_percentage,
        rules=rules,
        **kwargs,
    )


def multivariate_flag(
    key: str = "exp_y",
    environment: Environment = Environment.PRODUCTION,
    weights: tuple[int, ...] = (50, 50),
    keys: tuple[str, ...] | None = None,
    enabled: bool = True,
    rollout_percentage: int = 100,
    **kwargs,
) -> FlagDefinition:
    """Build an unsaved multivariate flag with one variant per weight."""
    keys = keys or tuple(["control", "treatment", "v3", "v4", "v5"][: len(weights)])
    variants = tuple(
        Variant(id=f"v{i + 1}", name=k.title(), key=k, weight=w)
        for i, (k, w) in enumerate(zip(keys, weights))
    )
    return FlagDefinition(
        key=key,
        environment=environment,
        name=kwargs.pop("name", key.replace("_", " ").title()),
        kind=FlagKind.MULTIVARIATE,
        enabled=enabled,
        rollout_percentage=rollout_percentage,
        variants=variants,
        **kwargs,
    )


# ============ Failure Doubles ============


class UnavailableFlagStore(MemoryFlagStore):
    """Flag store whose reads fail while `down` is set."""

    def __init__(self):
        super().__init__()
        self.down = False

    async def get(self, environment, key):
        if self.down:
            raise StoreUnavailableError("connection refused")
        return await super().get(environment, key)

    async def list(self, environment):
        if self.down:
            raise StoreUnavailableError("connection refused")
        return await super().list(environment)


class SlowFlagStore(MemoryFlagStore):
    """Flag store whose reads take `delay` seconds."""

    def __init__(self, delay: float = 1.0):
        super().__init__()
        self.delay = delay

    async def get(self, environment, key):
        await asyncio.sleep(self.delay)
        return await super().get(environment, key)


class FlakyAuditStore(MemoryAuditStore):
    """Audit store that rejects appends while `down` is set."""

    def __init__(self):
        super().__init__()
        self.down = False

    async def append(self, event):
        if self.down:
            raise StoreUnavailableError("audit store offline")
        return await super().append(event)


# ============ Component Fixtures ============


@pytest.fixture
def flag_store() -> MemoryFlagStore:
    return MemoryFlagStore()


@pytest.fixture
def audit_store() -> MemoryAuditStore:
    return MemoryAuditStore()


@pytest.fixture
def registry(flag_store: MemoryFlagStore) -> FlagRegistry:
    return FlagRegistry(flag_store)


@pytest.fixture
def audit_log(audit_store: MemoryAuditStore) -> AuditLog:
    return AuditLog(audit_store, page_size=10)


@pytest.fixture
def engine(registry: FlagRegistry) -> EvaluationEngine:
    return EvaluationEngine(registry)


@pytest.fixture
def pipeline(registry: FlagRegistry, audit_log: AuditLog) -> ChangePipeline:
    return ChangePipeline(registry, audit_log)


@pytest.fixture
def runtime(
    registry: FlagRegistry,
    audit_log: AuditLog,
    engine: EvaluationEngine,
    pipeline: ChangePipeline,
) -> FeatureRuntime:
    """In-memory runtime shared by the component fixtures above."""
    return FeatureRuntime(
        registry=registry,
        audit_log=audit_log,
        engine=engine,
        pipeline=pipeline,
        analyzer=StubRiskAnalyzer(),
    )


@pytest_asyncio.fixture(scope="function")
async def client(runtime: FeatureRuntime) -> AsyncGenerator[AsyncClient, None]:
    """
    Test client with the flag engine runtime overridden.
    """
    app.dependency_overrides[get_feature_runtime] = lambda: runtime

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


# ============ Database Fixtures ============


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine with the flag tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    await init_db(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
