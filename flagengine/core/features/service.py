"""
Feature Flag Service - Main evaluation logic.

Evaluation order (first applicable step decides):
1. Flag lookup (missing flag -> off, never an exception)
2. Killswitch (enabled=False -> off)
3. Targeting rules (first match -> in, bypasses rollout)
4. Percentage rollout (consistent hashing)
5. Variant allocation (multivariate only, same bucket as step 4)

Reusing the rollout bucket for allocation keeps assignments sticky: raising
the rollout percentage admits new contexts without moving existing ones
to a different variant. Editing variant weights or order does move the
range boundaries and can reassign a context.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog

from .allocator import allocate
from .bucketing import bucket
from .exceptions import (
    EvaluationFailedError,
    EvaluationTimeoutError,
    FeatureFlagError,
)
from .interfaces import (
    Decision,
    DecisionReason,
    Environment,
    EvaluationContext,
    FlagDefinition,
)
from .registry import FlagRegistry
from .rules import first_match

logger = structlog.get_logger()


def decide(flag: FlagDefinition, context: EvaluationContext) -> Decision:
    """
    Pure decision for one snapshot and one context.

    All working data is local; safe to call from any number of
    concurrent tasks.
    """
    if not flag.enabled:
        return Decision.off(flag.key, DecisionReason.DISABLED)

    context_bucket = bucket(flag.key, str(context.id))

    rule = first_match(flag.rules, context)
    if rule is not None:
        reason = DecisionReason.RULE_MATCH
    elif context_bucket < flag.rollout_percentage:
        reason = DecisionReason.ROLLOUT
    else:
        return Decision.off(flag.key, DecisionReason.OUT_OF_ROLLOUT)

    variant_key = None
    if flag.is_multivariate:
        variant_key = allocate(flag.variants, context_bucket)

    return Decision(
        flag_key=flag.key,
        enabled=True,
        reason=reason,
        variant_key=variant_key,
        matched_rule_id=rule.id if rule is not None else None,
    )


class EvaluationEngine:
    """
    Feature flag evaluation service.

    Reads snapshots from the registry and never writes. Errors:
    - missing flag: returns a not_found decision
    - StoreUnavailableError: propagated, callers must be able to tell
      "flag is off" from "cannot tell"
    - timeout: EvaluationTimeoutError
    - anything else: EvaluationFailedError
    """

    def __init__(
        self,
        registry: FlagRegistry,
        default_timeout: float | None = None,
    ):
        self.registry = registry
        self.default_timeout = default_timeout

    # ============================================================
    # MAIN EVALUATION
    # ============================================================

    async def evaluate(
        self,
        flag_key: str,
        environment: Environment,
        context: EvaluationContext,
        timeout: float | None = None,
    ) -> Decision:
        """
        Evaluate a feature flag with detailed result.

        Args:
            flag_key: Feature flag key
            environment: Environment to read the flag from
            context: Requester id and attributes
            timeout: Seconds to wait for the registry (default from config)

        Returns Decision with reason for debugging. An unknown environment
        holds no flags, so it evaluates like a missing flag.
        """
        try:
            environment = Environment(environment)
        except ValueError:
            return Decision.off(flag_key, DecisionReason.NOT_FOUND)

        timeout = timeout if timeout is not None else self.default_timeout
        async with self._guard(flag_key, environment, timeout):
            flag = await self.registry.get(environment, flag_key, timeout=timeout)
            if flag is None:
                decision = Decision.off(flag_key, DecisionReason.NOT_FOUND)
            else:
                decision = decide(flag, context)

        logger.debug(
            "Feature flag evaluated",
            flag_key=flag_key,
            environment=environment.value,
            context_id=context.id,
            enabled=decision.enabled,
            variant=decision.variant_key,
            reason=decision.reason.value,
        )
        return decision

    async def is_enabled(
        self,
        flag_key: str,
        environment: Environment,
        context: EvaluationContext,
    ) -> bool:
        """Check if a feature is enabled for this context."""
        decision = await self.evaluate(flag_key, environment, context)
        return decision.enabled

    async def evaluate_all(
        self,
        environment: Environment,
        context: EvaluationContext,
        timeout: float | None = None,
    ) -> dict[str, Decision]:
        """
        Evaluate every flag in an environment for one context.

        Useful for sending to frontend. Same timeout and error rules
        as evaluate(); an unknown environment yields no decisions.
        """
        try:
            environment = Environment(environment)
        except ValueError:
            return {}

        timeout = timeout if timeout is not None else self.default_timeout
        async with self._guard("*", environment, timeout):
            flags = await asyncio.wait_for(self.registry.list(environment), timeout)
            decisions = {flag.key: decide(flag, context) for flag in flags}
        return decisions

    @asynccontextmanager
    async def _guard(
        self,
        flag_key: str,
        environment: Environment,
        timeout: float | None,
    ) -> AsyncIterator[None]:
        """Translate timeouts and unexpected faults into evaluation errors."""
        try:
            yield
        except asyncio.TimeoutError as e:
            logger.warning(
                "Feature flag evaluation timed out",
                flag_key=flag_key,
                environment=environment.value,
                timeout=timeout,
            )
            raise EvaluationTimeoutError(
                f"Evaluation of '{flag_key}' timed out after {timeout}s"
            ) from e
        except FeatureFlagError:
            raise
        except Exception as e:
            logger.exception(
                "Feature flag evaluation failed",
                flag_key=flag_key,
                environment=environment.value,
            )
            raise EvaluationFailedError(f"Evaluation of '{flag_key}' failed: {e}") from e
