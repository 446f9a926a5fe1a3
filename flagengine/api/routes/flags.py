"""
Feature flag management routes.

Every write carries expectedVersion; a stale version answers 409 and
the client must re-fetch and retry. Validation failures answer 422
with the full list of violations.
"""

from fastapi import APIRouter, Query, status

from flagengine.api.dependencies.actor import Actor
from flagengine.core.features import (
    Analyzer,
    Environment,
    Pipeline,
    Registry,
)
from flagengine.core.features.pipeline import ChangeResult
from flagengine.schemas.flag import (
    ChangeResponse,
    DescribeRequest,
    FlagCreate,
    FlagResponse,
    FlagStats,
    FlagUpdate,
    RuleChange,
    VariantChange,
    VersionedChange,
)

router = APIRouter()


def _change_response(result: ChangeResult) -> ChangeResponse:
    return ChangeResponse(
        version=result.version,
        flag=FlagResponse.from_domain(result.flag),
        warnings=result.warnings,
        audit_pending=result.audit_pending,
    )


# ============================================================
# READ
# ============================================================

@router.get("/{environment}")
async def list_flags(
    environment: Environment,
    registry: Registry,
    q: str | None = Query(default=None, max_length=200),
) -> list[FlagResponse]:
    """List feature flags in an environment, optionally filtered by name or key."""
    flags = await registry.list(environment, query=q)
    return [FlagResponse.from_domain(f) for f in flags]


# Declared before /{environment}/{key} so "stats" is not read as a key
@router.get("/{environment}/stats")
async def flag_stats(environment: Environment, registry: Registry) -> FlagStats:
    """Active and total flag counts for the dashboard."""
    return FlagStats(**await registry.stats(environment))


@router.get("/{environment}/{key}")
async def get_flag(environment: Environment, key: str, registry: Registry) -> FlagResponse:
    """Get a specific feature flag by key."""
    return FlagResponse.from_domain(await registry.require(environment, key))


# ============================================================
# FLAG LIFECYCLE
# ============================================================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_flag(data: FlagCreate, pipeline: Pipeline, actor: Actor) -> ChangeResponse:
    """Create a new feature flag at version 1."""
    result = await pipeline.create_flag(data.to_domain(), actor)
    return _change_response(result)


@router.patch("/{environment}/{key}")
async def update_flag(
    environment: Environment,
    key: str,
    data: FlagUpdate,
    pipeline: Pipeline,
    actor: Actor,
) -> ChangeResponse:
    """Update a feature flag."""
    result = await pipeline.update_flag(
        environment, key, data.expected_version, data.to_patch(), actor
    )
    return _change_response(result)


@router.delete("/{environment}/{key}")
async def delete_flag(
    environment: Environment,
    key: str,
    pipeline: Pipeline,
    actor: Actor,
) -> ChangeResponse:
    """Delete a feature flag."""
    result = await pipeline.delete_flag(environment, key, actor)
    return _change_response(result)


# ============================================================
# VARIANTS
# ============================================================

@router.post("/{environment}/{key}/variants")
async def add_variant(
    environment: Environment,
    key: str,
    data: VariantChange,
    pipeline: Pipeline,
    actor: Actor,
) -> ChangeResponse:
    """Append a variant."""
    result = await pipeline.add_variant(
        environment, key, data.expected_version, data.variant.to_domain(), actor
    )
    return _change_response(result)


@router.put("/{environment}/{key}/variants/{variant_id}")
async def replace_variant(
    environment: Environment,
    key: str,
    variant_id: str,
    data: VariantChange,
    pipeline: Pipeline,
    actor: Actor,
) -> ChangeResponse:
    """Replace a variant in place."""
    variant = data.variant.model_copy(update={"id": variant_id}).to_domain()
    result = await pipeline.replace_variant(
        environment, key, data.expected_version, variant, actor
    )
    return _change_response(result)


@router.delete("/{environment}/{key}/variants/{variant_id}")
async def remove_variant(
    environment: Environment,
    key: str,
    variant_id: str,
    pipeline: Pipeline,
    actor: Actor,
    expected_version: int = Query(..., alias="expectedVersion", ge=1),
) -> ChangeResponse:
    """Remove a variant. A multivariate flag keeps at least two."""
    result = await pipeline.remove_variant(
        environment, key, expected_version, variant_id, actor
    )
    return _change_response(result)


@router.post("/{environment}/{key}/variants/distribute")
async def distribute_variants(
    environment: Environment,
    key: str,
    data: VersionedChange,
    pipeline: Pipeline,
    actor: Actor,
) -> ChangeResponse:
    """Split traffic evenly across the variants. The first takes any remainder."""
    result = await pipeline.distribute_weights(environment, key, data.expected_version, actor)
    return _change_response(result)


# ============================================================
# TARGETING RULES
# ============================================================

@router.post("/{environment}/{key}/rules")
async def add_rule(
    environment: Environment,
    key: str,
    data: RuleChange,
    pipeline: Pipeline,
    actor: Actor,
) -> ChangeResponse:
    """Insert a targeting rule (appended unless position is given)."""
    result = await pipeline.add_rule(
        environment, key, data.expected_version, data.rule.to_domain(), actor,
        position=data.position,
    )
    return _change_response(result)


@router.put("/{environment}/{key}/rules/{rule_id}")
async def replace_rule(
    environment: Environment,
    key: str,
    rule_id: str,
    data: RuleChange,
    pipeline: Pipeline,
    actor: Actor,
) -> ChangeResponse:
    """Replace a targeting rule in place."""
    rule = data.rule.model_copy(update={"id": rule_id}).to_domain()
    result = await pipeline.replace_rule(environment, key, data.expected_version, rule, actor)
    return _change_response(result)


@router.delete("/{environment}/{key}/rules/{rule_id}")
async def remove_rule(
    environment: Environment,
    key: str,
    rule_id: str,
    pipeline: Pipeline,
    actor: Actor,
    expected_version: int = Query(..., alias="expectedVersion", ge=1),
) -> ChangeResponse:
    """Remove a targeting rule."""
    result = await pipeline.remove_rule(environment, key, expected_version, rule_id, actor)
    return _change_response(result)


# ============================================================
# ADVISORY
# ============================================================

@router.get("/{environment}/{key}/analysis")
async def analyze_flag(
    environment: Environment,
    key: str,
    registry: Registry,
    analyzer: Analyzer,
) -> dict:
    """Advisory rollout risk analysis. Never blocks flag operations."""
    analysis = await analyzer.analyze(await registry.require(environment, key))
    return analysis.to_dict()


@router.post("/describe")
async def describe_flag(data: DescribeRequest, analyzer: Analyzer) -> dict[str, str]:
    """Suggest a description for a new flag name."""
    return {"description": await analyzer.describe(data.name)}
