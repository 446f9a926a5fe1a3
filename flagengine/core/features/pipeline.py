"""
Change Pipeline - validated, audited flag mutations.

Every operation goes through FlagRegistry (version check, validation,
atomic commit) and appends an AuditEvent from the registry's commit
hook, so events for one flag are appended in commit order.

An audit failure never rolls back the flag write. The event stays
queued in the AuditLog and the result is marked audit_pending.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Callable

import structlog

from .allocator import distribute_weights as even_weights
from .audit import AuditLog, flag_changes, new_event
from .exceptions import (
    InvalidConfigurationError,
    RuleNotFoundError,
    StoreUnavailableError,
    VariantNotFoundError,
    VersionConflictError,
    Violation,
)
from .interfaces import (
    AuditAction,
    Environment,
    FlagDefinition,
    TargetingRule,
    Variant,
)
from .registry import FlagRegistry

logger = structlog.get_logger()

# Fields an UpdateFlag patch may touch
PATCHABLE_FIELDS = {
    "name",
    "description",
    "kind",
    "enabled",
    "rollout_percentage",
    "variants",
    "rules",
    "owner",
}

REASSIGNMENT_WARNING = (
    "Variant weights or order changed on an enabled flag; "
    "some contexts may be reassigned to a different variant."
)


@dataclass
class ChangeResult:
    """Outcome of a committed change."""
    flag: FlagDefinition
    warnings: list[str] = field(default_factory=list)
    audit_pending: bool = False

    @property
    def version(self) -> int:
        return self.flag.version


def _action_for_patch(patch: dict[str, Any]) -> str:
    """Pick the most specific audit label for an UpdateFlag patch."""
    fields = set(patch)
    if fields == {"enabled"}:
        return AuditAction.TOGGLED
    if fields == {"rollout_percentage"}:
        return AuditAction.ROLLOUT_CHANGED
    return AuditAction.UPDATED


class ChangePipeline:
    """
    Operator-facing mutation API.

    Usage:
        pipeline = ChangePipeline(registry, audit_log)
        result = await pipeline.set_rollout(
            Environment.PRODUCTION, "beta_x", expected_version=3,
            percentage=50, actor="alice@example.com",
        )
    """

    def __init__(self, registry: FlagRegistry, audit_log: AuditLog):
        self.registry = registry
        self.audit_log = audit_log

    # ============================================================
    # FLAG LIFECYCLE
    # ============================================================

    async def create_flag(self, definition: FlagDefinition, actor: str) -> ChangeResult:
        """Validate and create a flag at version 1."""
        state = _AuditState()
        flag = await self.registry.create(
            definition,
            on_commit=self._audit_hook(AuditAction.CREATED, actor, state),
        )
        return ChangeResult(flag=flag, audit_pending=state.pending)

    async def update_flag(
        self,
        environment: Environment,
        key: str,
        expected_version: int,
        patch: dict[str, Any],
        actor: str,
    ) -> ChangeResult:
        """
        Apply a partial update.

        patch maps field names to new values; variants and rules replace
        the whole list. Unknown fields are rejected with ValueError. An
        empty patch commits nothing and returns the current flag.
        """
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot patch fields: {', '.join(sorted(unknown))}")
        if not patch:
            current = await self.registry.require(environment, key)
            if current.version != expected_version:
                raise VersionConflictError(key, expected_version, current.version)
            return ChangeResult(flag=current)

        values = dict(patch)
        if "variants" in values:
            values["variants"] = tuple(_as_variant(v) for v in values["variants"])
        if "rules" in values:
            values["rules"] = tuple(_as_rule(r) for r in values["rules"])

        return await self._apply(
            environment,
            key,
            expected_version,
            lambda flag: replace(flag, **values),
            _action_for_patch(patch),
            actor,
        )

    async def delete_flag(self, environment: Environment, key: str, actor: str) -> ChangeResult:
        """Delete a flag. Other environments are unaffected."""
        state = _AuditState()
        flag = await self.registry.delete(
            environment,
            key,
            on_commit=self._audit_hook(AuditAction.DELETED, actor, state),
        )
        return ChangeResult(flag=flag, audit_pending=state.pending)

    async def set_enabled(
        self,
        environment: Environment,
        key: str,
        expected_version: int,
        enabled: bool,
        actor: str,
    ) -> ChangeResult:
        """Flip the killswitch."""
        return await self.update_flag(environment, key, expected_version, {"enabled": enabled}, actor)

    async def set_rollout(
        self,
        environment: Environment,
        key: str,
        expected_version: int,
        percentage: int,
        actor: str,
    ) -> ChangeResult:
        """Change the rollout percentage. Never moves variant assignments."""
        return await self.update_flag(
            environment, key, expected_version, {"rollout_percentage": percentage}, actor
        )

    # ============================================================
    # VARIANTS
    # ============================================================

    async def add_variant(
        self,
        environment: Environment,
        key: str,
        expected_version: int,
        variant: Variant,
        actor: str,
    ) -> ChangeResult:
        """Append a variant. Weights must still sum to 100 afterwards."""
        return await self._apply(
            environment,
            key,
            expected_version,
            lambda flag: replace(flag, variants=flag.variants + (variant,)),
            AuditAction.VARIANT_ADDED,
            actor,
        )

    async def replace_variant(
        self,
        environment: Environment,
        key: str,
        expected_version: int,
        variant: Variant,
        actor: str,
    ) -> ChangeResult:
        """Replace the variant with the same id, keeping its position."""
        def mutate(flag: FlagDefinition) -> FlagDefinition:
            if not any(v.id == variant.id for v in flag.variants):
                raise VariantNotFoundError(flag.key, variant.id)
            return replace(
                flag,
                variants=tuple(variant if v.id == variant.id else v for v in flag.variants),
            )

        return await self._apply(
            environment, key, expected_version, mutate, AuditAction.VARIANT_UPDATED, actor
        )

    async def remove_variant(
        self,
        environment: Environment,
        key: str,
        expected_version: int,
        variant_id: str,
        actor: str,
    ) -> ChangeResult:
        """Remove a variant. Rejected if fewer than two would remain."""
        def mutate(flag: FlagDefinition) -> FlagDefinition:
            remaining = tuple(v for v in flag.variants if v.id != variant_id)
            if len(remaining) == len(flag.variants):
                raise VariantNotFoundError(flag.key, variant_id)
            return replace(flag, variants=remaining)

        return await self._apply(
            environment, key, expected_version, mutate, AuditAction.VARIANT_REMOVED, actor
        )

    async def distribute_weights(
        self,
        environment: Environment,
        key: str,
        expected_version: int,
        actor: str,
    ) -> ChangeResult:
        """Split traffic evenly across the current variants, keeping their order."""
        def mutate(flag: FlagDefinition) -> FlagDefinition:
            if not flag.variants:
                raise InvalidConfigurationError(
                    [Violation("variants", "Flag has no variants to distribute")]
                )
            weights = even_weights(len(flag.variants))
            return replace(
                flag,
                variants=tuple(replace(v, weight=w) for v, w in zip(flag.variants, weights)),
            )

        return await self._apply(
            environment, key, expected_version, mutate, AuditAction.UPDATED, actor
        )

    # ============================================================
    # TARGETING RULES
    # ============================================================

    async def add_rule(
        self,
        environment: Environment,
        key: str,
        expected_version: int,
        rule: TargetingRule,
        actor: str,
        position: int | None = None,
    ) -> ChangeResult:
        """Insert a rule at position (default: last). Order is first-match-wins."""
        def mutate(flag: FlagDefinition) -> FlagDefinition:
            rules = list(flag.rules)
            rules.insert(len(rules) if position is None else position, rule)
            return replace(flag, rules=tuple(rules))

        return await self._apply(
            environment, key, expected_version, mutate, AuditAction.RULE_ADDED, actor
        )

    async def replace_rule(
        self,
        environment: Environment,
        key: str,
        expected_version: int,
        rule: TargetingRule,
        actor: str,
    ) -> ChangeResult:
        """Replace the rule with the same id, keeping its position."""
        def mutate(flag: FlagDefinition) -> FlagDefinition:
            if not any(r.id == rule.id for r in flag.rules):
                raise RuleNotFoundError(flag.key, rule.id)
            return replace(flag, rules=tuple(rule if r.id == rule.id else r for r in flag.rules))

        return await self._apply(
            environment, key, expected_version, mutate, AuditAction.RULE_UPDATED, actor
        )

    async def remove_rule(
        self,
        environment: Environment,
        key: str,
        expected_version: int,
        rule_id: str,
        actor: str,
    ) -> ChangeResult:
        """Remove a targeting rule."""
        def mutate(flag: FlagDefinition) -> FlagDefinition:
            remaining = tuple(r for r in flag.rules if r.id != rule_id)
            if len(remaining) == len(flag.rules):
                raise RuleNotFoundError(flag.key, rule_id)
            return replace(flag, rules=remaining)

        return await self._apply(
            environment, key, expected_version, mutate, AuditAction.RULE_REMOVED, actor
        )

    # ============================================================
    # HELPERS
    # ============================================================

    async def _apply(
        self,
        environment: Environment,
        key: str,
        expected_version: int,
        mutator: Callable[[FlagDefinition], FlagDefinition],
        action: str,
        actor: str,
    ) -> ChangeResult:
        state = _AuditState()
        flag = await self.registry.apply_update(
            environment,
            key,
            expected_version,
            mutator,
            on_commit=self._audit_hook(action, actor, state),
        )
        return ChangeResult(flag=flag, warnings=state.warnings, audit_pending=state.pending)

    def _audit_hook(self, action: str, actor: str, state: "_AuditState"):
        async def on_commit(previous: FlagDefinition | None, current: FlagDefinition | None):
            flag = current or previous
            if (
                previous is not None
                and current is not None
                and current.enabled
                and current.is_multivariate
                and previous.variant_table() != current.variant_table()
            ):
                state.warnings.append(REASSIGNMENT_WARNING)
                logger.warning(
                    "Variant table changed on live flag",
                    flag_key=flag.key,
                    environment=flag.environment.value,
                    version=current.version,
                )

            event = new_event(
                action=action,
                flag_key=flag.key,
                actor=actor,
                environment=flag.environment,
                version=current.version if current else previous.version,
                changes=flag_changes(previous, current),
            )
            try:
                await self.audit_log.append(event)
            except StoreUnavailableError:
                state.pending = True
                logger.error(
                    "Audit event not persisted; flag change kept",
                    flag_key=flag.key,
                    environment=flag.environment.value,
                    event_id=event.id,
                )

        return on_commit


@dataclass
class _AuditState:
    warnings: list[str] = field(default_factory=list)
    pending: bool = False


def _as_variant(value: Variant | dict) -> Variant:
    return value if isinstance(value, Variant) else Variant(**value)


def _as_rule(value: TargetingRule | dict) -> TargetingRule:
    return value if isinstance(value, TargetingRule) else TargetingRule(**value)
