"""
FastAPI dependencies for the flag engine.

The registry, audit log, engine and pipeline are process-wide
singletons: the registry's per-key write locks only serialize writers
that share an instance.

Usage:
    from flagengine.core.features import Engine

    @router.post("/evaluate")
    async def evaluate(body: EvaluateRequest, engine: Engine):
        return (await engine.evaluate(...)).to_dict()
"""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends

from flagengine.core.config import Settings, settings

from .advisor import RiskAnalyzer, get_risk_analyzer
from .audit import AuditLog
from .backends.database import DatabaseAuditStore, DatabaseFlagStore
from .backends.memory import MemoryAuditStore, MemoryFlagStore
from .pipeline import ChangePipeline
from .registry import FlagRegistry
from .service import EvaluationEngine


@dataclass
class FeatureRuntime:
    """Wired set of flag engine components."""
    registry: FlagRegistry
    audit_log: AuditLog
    engine: EvaluationEngine
    pipeline: ChangePipeline
    analyzer: RiskAnalyzer


def build_runtime(config: Settings, session_factory=None) -> FeatureRuntime:
    """
    Build the components for the configured backend.

    Uses FEATURE_BACKEND setting:
    - "database": SQLAlchemy (default, production)
    - "memory": In-memory (development/testing)
    """
    features = config.features

    if features.backend == "memory":
        flag_store, audit_store = MemoryFlagStore(), MemoryAuditStore()
    else:
        if session_factory is None:
            from flagengine.models.database import get_session_factory
            session_factory = get_session_factory()
        flag_store = DatabaseFlagStore(session_factory)
        audit_store = DatabaseAuditStore(session_factory)

    registry = FlagRegistry(flag_store)
    audit_log = AuditLog(audit_store, page_size=features.audit_page_size)
    return FeatureRuntime(
        registry=registry,
        audit_log=audit_log,
        engine=EvaluationEngine(registry, default_timeout=features.evaluation_timeout),
        pipeline=ChangePipeline(registry, audit_log),
        analyzer=get_risk_analyzer(
            features.advisor_api_key,
            model=features.advisor_model,
            timeout=features.advisor_timeout,
        ),
    )


# ============================================================
# RUNTIME SINGLETON
# ============================================================

_runtime: FeatureRuntime | None = None


def get_feature_runtime() -> FeatureRuntime:
    """Get or create the runtime singleton."""
    global _runtime
    if _runtime is None:
        _runtime = build_runtime(settings)
    return _runtime


def set_feature_runtime(runtime: FeatureRuntime | None) -> None:
    """Install a runtime (app startup, tests). None resets."""
    global _runtime
    _runtime = runtime


Runtime = Annotated[FeatureRuntime, Depends(get_feature_runtime)]


def get_evaluation_engine(runtime: Runtime) -> EvaluationEngine:
    return runtime.engine


def get_pipeline(runtime: Runtime) -> ChangePipeline:
    return runtime.pipeline


def get_registry(runtime: Runtime) -> FlagRegistry:
    return runtime.registry


def get_audit_log(runtime: Runtime) -> AuditLog:
    return runtime.audit_log


def get_analyzer(runtime: Runtime) -> RiskAnalyzer:
    return runtime.analyzer


# Type aliases for cleaner injection
Engine = Annotated[EvaluationEngine, Depends(get_evaluation_engine)]
Pipeline = Annotated[ChangePipeline, Depends(get_pipeline)]
Registry = Annotated[FlagRegistry, Depends(get_registry)]
Audit = Annotated[AuditLog, Depends(get_audit_log)]
Analyzer = Annotated[RiskAnalyzer, Depends(get_analyzer)]
