"""
Feature Flag Interfaces - Core abstractions.

These define the data contracts shared by the evaluation engine,
the registry, the change pipeline and the audit log, plus the
storage backends they sit on.

Snapshots are frozen dataclasses. Nested collections are tuples, so a
definition handed out by the registry can be shared between any number
of concurrent evaluations without copying.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any


# ============================================================
# ENUMERATIONS
# ============================================================

class Environment(str, Enum):
    """Deployment environment. Partitions all flag state."""
    DEVELOPMENT = "Development"
    STAGING = "Staging"
    PRODUCTION = "Production"


class FlagKind(str, Enum):
    """Boolean flags are on/off; multivariate flags serve a weighted variant."""
    BOOLEAN = "BOOLEAN"
    MULTIVARIATE = "MULTIVARIATE"


class RuleOperator(str, Enum):
    """Targeting rule comparison operators."""
    EQUALS = "EQUALS"
    CONTAINS = "CONTAINS"
    ONE_OF = "ONE_OF"


class DecisionReason(str, Enum):
    """Why an evaluation produced its decision."""
    NOT_FOUND = "not_found"
    DISABLED = "disabled"
    RULE_MATCH = "rule_match"
    ROLLOUT = "rollout"
    OUT_OF_ROLLOUT = "out_of_rollout"


class AuditAction:
    """Standard audit action labels."""

    CREATED = "Created Flag"
    UPDATED = "Updated Configuration"
    TOGGLED = "Toggle Enabled"
    ROLLOUT_CHANGED = "Changed Rollout"
    VARIANT_ADDED = "Added Variant"
    VARIANT_UPDATED = "Updated Variant"
    VARIANT_REMOVED = "Removed Variant"
    RULE_ADDED = "Added Rule"
    RULE_UPDATED = "Updated Rule"
    RULE_REMOVED = "Removed Rule"
    DELETED = "Deleted Flag"


# ============================================================
# FLAG DEFINITION
# ============================================================

@dataclass(frozen=True)
class Variant:
    """
    One weighted arm of a multivariate flag.

    Attributes:
        id: Stable identifier used by replace/delete operations
        name: Human-readable name (e.g., "Control")
        key: Value served to callers, unique within the flag
        weight: Share of traffic in percent (0-100)
    """
    id: str
    name: str
    key: str
    weight: int


@dataclass(frozen=True)
class TargetingRule:
    """
    Attribute predicate that, when matched, bypasses rollout gating.

    Example:
        TargetingRule(id="r1", attribute="country",
                      operator=RuleOperator.ONE_OF, values=("DE", "FR"))
    """
    id: str
    attribute: str
    operator: RuleOperator
    values: tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "operator", RuleOperator(self.operator))
        object.__setattr__(self, "values", tuple(self.values))


@dataclass(frozen=True)
class FlagDefinition:
    """
    Feature flag definition for one environment.

    Attributes:
        key: Unique identifier within the environment (e.g., "new_checkout")
        environment: Environment this definition belongs to
        name: Human-readable name
        description: What this flag controls
        kind: BOOLEAN or MULTIVARIATE
        enabled: Killswitch, takes precedence over rules and rollout
        rollout_percentage: Share of non-targeted traffic admitted (0-100)
        variants: Ordered weighted variants (multivariate only)
        rules: Ordered targeting rules, first match wins
        version: Optimistic concurrency counter, 1 on create
        owner: Team or person responsible for the flag
    """
    key: str
    environment: Environment
    name: str
    description: str = ""
    kind: FlagKind = FlagKind.BOOLEAN
    enabled: bool = False
    rollout_percentage: int = 100
    variants: tuple[Variant, ...] = ()
    rules: tuple[TargetingRule, ...] = ()
    version: int = 0
    owner: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self):
        object.__setattr__(self, "environment", Environment(self.environment))
        object.__setattr__(self, "kind", FlagKind(self.kind))
        object.__setattr__(self, "variants", tuple(self.variants))
        object.__setattr__(self, "rules", tuple(self.rules))

    @property
    def is_multivariate(self) -> bool:
        return self.kind == FlagKind.MULTIVARIATE

    def variant_table(self) -> tuple[tuple[str, int], ...]:
        """Ordered (key, weight) pairs. Equal tables allocate identically."""
        return tuple((v.key, v.weight) for v in self.variants)

    def to_dict(self) -> dict[str, Any]:
        """Plain dict form, used for storage and audit diffs."""
        data = asdict(self)
        data["environment"] = self.environment.value
        data["kind"] = self.kind.value
        data["variants"] = [asdict(v) for v in self.variants]
        data["rules"] = [
            {**asdict(r), "operator": r.operator.value, "values": list(r.values)}
            for r in self.rules
        ]
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        data["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return data


# ============================================================
# EVALUATION
# ============================================================

@dataclass
class EvaluationContext:
    """
    Caller-supplied description of the requester.

    Attributes:
        id: Stable identifier used for bucketing (user id, session id)
        attributes: Attribute name -> value, matched by targeting rules
    """
    id: str
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Decision:
    """
    Result of evaluating one flag for one context.

    Includes the reason for debugging/logging.
    """
    flag_key: str
    enabled: bool
    reason: DecisionReason
    variant_key: str | None = None
    matched_rule_id: str | None = None

    @classmethod
    def off(cls, flag_key: str, reason: DecisionReason) -> "Decision":
        return cls(flag_key=flag_key, enabled=False, reason=reason)

    def to_dict(self) -> dict[str, Any]:
        """JSON contract served to SDKs."""
        return {
            "flagKey": self.flag_key,
            "isEnabled": self.enabled,
            "variantKey": self.variant_key,
            "matchedRuleId": self.matched_rule_id,
            "reason": self.reason.value,
        }


# ============================================================
# AUDIT
# ============================================================

@dataclass(frozen=True)
class AuditEvent:
    """
    Immutable record of one committed change.

    sequence is assigned by the audit log on append and defines
    storage order.
    """
    id: str
    action: str
    flag_key: str
    actor: str
    environment: Environment
    timestamp: datetime
    version: int | None = None
    changes: dict[str, Any] | None = None
    sequence: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "flagKey": self.flag_key,
            "actor": self.actor,
            "environment": Environment(self.environment).value,
            "timestamp": self.timestamp.isoformat(),
            "version": self.version,
            "changes": self.changes,
            "sequence": self.sequence,
        }


@dataclass
class AuditFilter:
    """Filter for audit queries. Unset fields match everything."""
    flag_key: str | None = None
    environment: Environment | None = None
    since: datetime | None = None
    action: str | None = None
    actor: str | None = None

    def matches(self, event: AuditEvent) -> bool:
        if self.flag_key is not None and event.flag_key != self.flag_key:
            return False
        if self.environment is not None and event.environment != self.environment:
            return False
        if self.since is not None and event.timestamp < self.since:
            return False
        if self.action is not None and event.action != self.action:
            return False
        if self.actor is not None and event.actor != self.actor:
            return False
        return True


# ============================================================
# STORAGE BACKENDS
# ============================================================

class FlagStore(ABC):
    """
    Abstract persistent store for flag definitions.

    Implementations:
    - MemoryFlagStore: In-memory (dev/testing)
    - DatabaseFlagStore: SQLAlchemy (PostgreSQL in production)

    Failures reaching the backing store raise StoreUnavailableError.
    """

    @abstractmethod
    async def get(self, environment: Environment, key: str) -> FlagDefinition | None:
        """Get a definition by key, or None."""
        pass

    @abstractmethod
    async def list(self, environment: Environment) -> list[FlagDefinition]:
        """List all definitions in an environment, ordered by key."""
        pass

    @abstractmethod
    async def insert(self, definition: FlagDefinition) -> FlagDefinition:
        """Insert a new definition. Raises FlagAlreadyExistsError on collision."""
        pass

    @abstractmethod
    async def compare_and_swap(
        self,
        definition: FlagDefinition,
        expected_version: int,
    ) -> FlagDefinition:
        """
        Replace the stored definition if its version equals expected_version.

        Raises FlagNotFoundError if absent, VersionConflictError on mismatch.
        """
        pass

    @abstractmethod
    async def delete(self, environment: Environment, key: str) -> bool:
        """Delete a definition. Returns False if it did not exist."""
        pass


class AuditStore(ABC):
    """
    Abstract append-only store for audit events.

    Storage order is append order; readers get newest-first.
    """

    @abstractmethod
    async def append(self, event: AuditEvent) -> AuditEvent:
        """Persist an event, returning it with its sequence number set."""
        pass

    @abstractmethod
    async def count(self, filters: AuditFilter) -> int:
        """Count events matching filters."""
        pass

    @abstractmethod
    async def fetch(
        self,
        filters: AuditFilter,
        limit: int,
        offset: int = 0,
    ) -> list[AuditEvent]:
        """Fetch matching events newest-first."""
        pass
