"""
Feature flag schemas.

Field names are camelCase on the wire (flagKey, rolloutPercentage, ...)
and snake_case in Python.
"""

from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from flagengine.core.features import (
    Environment,
    EvaluationContext,
    FlagDefinition,
    FlagKind,
    RuleOperator,
    TargetingRule,
    Variant,
)


def _short_id() -> str:
    return uuid4().hex[:8]


class CamelModel(BaseModel):
    """Base schema with camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================
# NESTED
# ============================================================

class VariantSchema(CamelModel):
    """Variant payload. Weight constraints are checked on commit."""
    id: str = Field(default_factory=_short_id, min_length=1, max_length=64)
    name: str
    key: str
    weight: int

    def to_domain(self) -> Variant:
        return Variant(id=self.id, name=self.name, key=self.key, weight=self.weight)


class RuleSchema(CamelModel):
    """Targeting rule payload."""
    id: str = Field(default_factory=_short_id, min_length=1, max_length=64)
    attribute: str
    operator: RuleOperator
    values: list[str] = Field(default_factory=list)

    def to_domain(self) -> TargetingRule:
        return TargetingRule(
            id=self.id,
            attribute=self.attribute,
            operator=self.operator,
            values=tuple(self.values),
        )


# ============================================================
# REQUESTS
# ============================================================

class FlagCreate(CamelModel):
    """Create a new feature flag."""
    key: str = Field(..., min_length=1, max_length=100, pattern=r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
    environment: Environment
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    kind: FlagKind = FlagKind.BOOLEAN
    enabled: bool = False
    rollout_percentage: int = 100
    variants: list[VariantSchema] = Field(default_factory=list)
    rules: list[RuleSchema] = Field(default_factory=list)
    owner: str = ""

    def to_domain(self) -> FlagDefinition:
        return FlagDefinition(
            key=self.key,
            environment=self.environment,
            name=self.name,
            description=self.description,
            kind=self.kind,
            enabled=self.enabled,
            rollout_percentage=self.rollout_percentage,
            variants=tuple(v.to_domain() for v in self.variants),
            rules=tuple(r.to_domain() for r in self.rules),
            owner=self.owner,
        )


class FlagUpdate(CamelModel):
    """
    Partial update. Only fields present in the body are changed;
    variants and rules replace the whole list.
    """
    expected_version: int = Field(..., ge=1)
    name: str | None = None
    description: str | None = None
    kind: FlagKind | None = None
    enabled: bool | None = None
    rollout_percentage: int | None = None
    variants: list[VariantSchema] | None = None
    rules: list[RuleSchema] | None = None
    owner: str | None = None

    def to_patch(self) -> dict[str, Any]:
        patch: dict[str, Any] = {}
        for name in self.model_fields_set - {"expected_version"}:
            value = getattr(self, name)
            if value is None:
                continue
            if name == "variants":
                value = [v.to_domain() for v in value]
            elif name == "rules":
                value = [r.to_domain() for r in value]
            patch[name] = value
        return patch


class VersionedChange(CamelModel):
    """Body of a change that needs only the version the client last read."""
    expected_version: int = Field(..., ge=1)


class VariantChange(VersionedChange):
    variant: VariantSchema


class RuleChange(VersionedChange):
    rule: RuleSchema
    position: int | None = Field(default=None, ge=0)


class ContextSchema(CamelModel):
    id: str = Field(..., min_length=1)
    attributes: dict[str, Any] = Field(default_factory=dict)

    def to_domain(self) -> EvaluationContext:
        return EvaluationContext(id=self.id, attributes=dict(self.attributes))


class EvaluateRequest(CamelModel):
    """Evaluate one flag for one context."""
    environment: Environment
    flag_key: str
    context: ContextSchema


class EvaluateAllRequest(CamelModel):
    """Evaluate every flag in an environment for one context."""
    environment: Environment
    context: ContextSchema


class DescribeRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)


# ============================================================
# RESPONSES
# ============================================================

class FlagResponse(CamelModel):
    """Feature flag response."""
    key: str
    environment: Environment
    name: str
    description: str
    kind: FlagKind
    enabled: bool
    rollout_percentage: int
    variants: list[VariantSchema]
    rules: list[RuleSchema]
    version: int
    owner: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_domain(cls, flag: FlagDefinition) -> "FlagResponse":
        return cls(
            key=flag.key,
            environment=flag.environment,
            name=flag.name,
            description=flag.description,
            kind=flag.kind,
            enabled=flag.enabled,
            rollout_percentage=flag.rollout_percentage,
            variants=[
                VariantSchema(id=v.id, name=v.name, key=v.key, weight=v.weight)
                for v in flag.variants
            ],
            rules=[
                RuleSchema(id=r.id, attribute=r.attribute, operator=r.operator, values=list(r.values))
                for r in flag.rules
            ],
            version=flag.version,
            owner=flag.owner,
            created_at=flag.created_at,
            updated_at=flag.updated_at,
        )


class ChangeResponse(CamelModel):
    """Result of a committed change."""
    version: int
    flag: FlagResponse
    warnings: list[str] = Field(default_factory=list)
    audit_pending: bool = False


class FlagStats(CamelModel):
    """Per-environment dashboard counters."""
    active: int
    total: int
