"""
Feature Flag Engine.

Server-side evaluation and change management:
- Deterministic bucketing (consistent hashing per flag)
- Weighted variant allocation (A/B/n)
- Ordered targeting rules (first match wins)
- Versioned, concurrency-safe registry per environment
- Validated, audited change pipeline

Usage Levels:

Level 1 - Evaluate:
    from flagengine.core.features import Engine, EvaluationContext

    @router.get("/checkout")
    async def checkout(engine: Engine):
        decision = await engine.evaluate(
            "new_checkout", Environment.PRODUCTION,
            EvaluationContext(id=user_id, attributes={"plan": "pro"}),
        )
        if decision.enabled:
            return new_checkout(decision.variant_key)
        return old_checkout()

Level 2 - Change configuration:
    result = await pipeline.set_rollout(
        Environment.PRODUCTION, "new_checkout",
        expected_version=flag.version, percentage=25, actor="alice",
    )

Level 3 - Review:
    async for event in audit_log.query(AuditFilter(flag_key="new_checkout")):
        print(event.action, event.actor)
"""

from .interfaces import (
    AuditAction,
    AuditEvent,
    AuditFilter,
    AuditStore,
    Decision,
    DecisionReason,
    Environment,
    EvaluationContext,
    FlagDefinition,
    FlagKind,
    FlagStore,
    RuleOperator,
    TargetingRule,
    Variant,
)

from .exceptions import (
    EvaluationFailedError,
    EvaluationTimeoutError,
    FeatureFlagError,
    FlagAlreadyExistsError,
    FlagNotFoundError,
    InvalidConfigurationError,
    NotFoundError,
    RuleNotFoundError,
    StoreUnavailableError,
    VariantNotFoundError,
    VersionConflictError,
    Violation,
)

from .bucketing import bucket
from .allocator import allocate, distribute_weights
from .rules import matches
from .validation import collect_violations, validate_definition
from .registry import FlagRegistry
from .audit import AuditLog, AuditPage, AuditQuery
from .service import EvaluationEngine
from .pipeline import ChangePipeline, ChangeResult
from .advisor import RiskAnalysis, RiskAnalyzer, StubRiskAnalyzer, GeminiRiskAnalyzer

from .dependencies import (
    Analyzer,
    Audit,
    Engine,
    FeatureRuntime,
    Pipeline,
    Registry,
    Runtime,
    build_runtime,
    get_feature_runtime,
    set_feature_runtime,
)

from .backends import (
    DatabaseAuditStore,
    DatabaseFlagStore,
    MemoryAuditStore,
    MemoryFlagStore,
)

__all__ = [
    # Interfaces
    "AuditAction",
    "AuditEvent",
    "AuditFilter",
    "AuditStore",
    "Decision",
    "DecisionReason",
    "Environment",
    "EvaluationContext",
    "FlagDefinition",
    "FlagKind",
    "FlagStore",
    "RuleOperator",
    "TargetingRule",
    "Variant",
    # Errors
    "EvaluationFailedError",
    "EvaluationTimeoutError",
    "FeatureFlagError",
    "FlagAlreadyExistsError",
    "FlagNotFoundError",
    "InvalidConfigurationError",
    "NotFoundError",
    "RuleNotFoundError",
    "StoreUnavailableError",
    "VariantNotFoundError",
    "VersionConflictError",
    "Violation",
    # Core functions
    "bucket",
    "allocate",
    "distribute_weights",
    "matches",
    "collect_violations",
    "validate_definition",
    # Services
    "FlagRegistry",
    "AuditLog",
    "AuditPage",
    "AuditQuery",
    "EvaluationEngine",
    "ChangePipeline",
    "ChangeResult",
    # Advisory
    "RiskAnalysis",
    "RiskAnalyzer",
    "StubRiskAnalyzer",
    "GeminiRiskAnalyzer",
    # Dependencies
    "Analyzer",
    "Audit",
    "Engine",
    "FeatureRuntime",
    "Pipeline",
    "Registry",
    "Runtime",
    "build_runtime",
    "get_feature_runtime",
    "set_feature_runtime",
    # Backends
    "DatabaseAuditStore",
    "DatabaseFlagStore",
    "MemoryAuditStore",
    "MemoryFlagStore",
]
