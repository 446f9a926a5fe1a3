"""
Tests for flag evaluation.
"""

import asyncio
from dataclasses import replace

import pytest

from flagengine.core.features import (
    DecisionReason,
    Environment,
    EvaluationContext,
    EvaluationEngine,
    EvaluationFailedError,
    EvaluationTimeoutError,
    FlagRegistry,
    MemoryFlagStore,
    RuleOperator,
    StoreUnavailableError,
    TargetingRule,
)
from flagengine.core.features.bucketing import bucket
from flagengine.core.features.service import decide

from conftest import SlowFlagStore, UnavailableFlagStore, boolean_flag, multivariate_flag

PROD = Environment.PRODUCTION

GERMANY_RULE = TargetingRule(
    id="dach", attribute="country", operator=RuleOperator.ONE_OF, values=("DE", "AT", "CH")
)


def context_in_bucket(flag_key: str, target: int) -> EvaluationContext:
    """Find a context id that hashes to the target bucket for flag_key."""
    for i in range(100_000):
        context_id = f"user-{i}"
        if bucket(flag_key, context_id) == target:
            return EvaluationContext(id=context_id)
    raise AssertionError(f"no context found for bucket {target}")


# ============ Lookup ============


@pytest.mark.asyncio
async def test_missing_flag_is_off(engine: EvaluationEngine):
    decision = await engine.evaluate("ghost", PROD, EvaluationContext(id="u1"))

    assert decision.enabled is False
    assert decision.reason == DecisionReason.NOT_FOUND
    assert decision.variant_key is None


@pytest.mark.asyncio
async def test_flags_are_scoped_to_environment(registry: FlagRegistry, engine: EvaluationEngine):
    await registry.create(boolean_flag(environment=Environment.STAGING))

    staging = await engine.evaluate("beta_x", Environment.STAGING, EvaluationContext(id="u1"))
    prod = await engine.evaluate("beta_x", PROD, EvaluationContext(id="u1"))

    assert staging.enabled is True
    assert prod.reason == DecisionReason.NOT_FOUND


# ============ Killswitch and Rules ============


@pytest.mark.asyncio
async def test_killswitch_beats_everything(registry: FlagRegistry, engine: EvaluationEngine):
    await registry.create(
        boolean_flag(enabled=False, rollout_percentage=100, rules=(GERMANY_RULE,))
    )
    context = EvaluationContext(id="u1", attributes={"country": "DE"})

    decision = await engine.evaluate("beta_x", PROD, context)

    assert decision.enabled is False
    assert decision.reason == DecisionReason.DISABLED


@pytest.mark.asyncio
async def test_rule_match_bypasses_rollout(registry: FlagRegistry, engine: EvaluationEngine):
    await registry.create(boolean_flag(rollout_percentage=0, rules=(GERMANY_RULE,)))

    matched = await engine.evaluate(
        "beta_x", PROD, EvaluationContext(id="u1", attributes={"country": "AT"})
    )
    unmatched = await engine.evaluate(
        "beta_x", PROD, EvaluationContext(id="u1", attributes={"country": "US"})
    )

    assert matched.enabled is True
    assert matched.reason == DecisionReason.RULE_MATCH
    assert matched.matched_rule_id == "dach"
    assert unmatched.enabled is False
    assert unmatched.reason == DecisionReason.OUT_OF_ROLLOUT


@pytest.mark.asyncio
async def test_malformed_attributes_never_raise(registry: FlagRegistry, engine: EvaluationEngine):
    await registry.create(boolean_flag(rollout_percentage=0, rules=(GERMANY_RULE,)))
    context = EvaluationContext(id="u1", attributes={"country": 49, "plan": None})

    decision = await engine.evaluate("beta_x", PROD, context)

    assert decision.reason == DecisionReason.OUT_OF_ROLLOUT


@pytest.mark.asyncio
async def test_rule_match_on_multivariate_still_allocates(
    registry: FlagRegistry, engine: EvaluationEngine
):
    await registry.create(multivariate_flag(rollout_percentage=0, rules=(GERMANY_RULE,)))
    context = context_in_bucket("exp_y", 75)
    context.attributes["country"] = "CH"

    decision = await engine.evaluate("exp_y", PROD, context)

    assert decision.reason == DecisionReason.RULE_MATCH
    assert decision.variant_key == "treatment"


# ============ Rollout ============


@pytest.mark.asyncio
async def test_rollout_share(registry: FlagRegistry, engine: EvaluationEngine):
    """beta_x at 30%: roughly 30% of 10,000 contexts are admitted."""
    await registry.create(boolean_flag(rollout_percentage=30))

    admitted = 0
    for i in range(10_000):
        if await engine.is_enabled("beta_x", PROD, EvaluationContext(id=f"user-{i}")):
            admitted += 1

    assert 2700 <= admitted <= 3300


@pytest.mark.asyncio
async def test_raising_rollout_admits_without_evicting(
    registry: FlagRegistry, engine: EvaluationEngine
):
    """A context in bucket 50 is out at 40% and in at 60%."""
    await registry.create(boolean_flag(rollout_percentage=40))
    context = context_in_bucket("beta_x", 50)

    before = await engine.evaluate("beta_x", PROD, context)
    await registry.apply_update(PROD, "beta_x", 1, lambda f: replace(f, rollout_percentage=60))
    after = await engine.evaluate("beta_x", PROD, context)

    assert before.reason == DecisionReason.OUT_OF_ROLLOUT
    assert after.enabled is True
    assert after.reason == DecisionReason.ROLLOUT


@pytest.mark.asyncio
async def test_raising_rollout_keeps_variant(registry: FlagRegistry, engine: EvaluationEngine):
    await registry.create(multivariate_flag(rollout_percentage=40))
    early = context_in_bucket("exp_y", 30)
    late = context_in_bucket("exp_y", 55)

    before = await engine.evaluate("exp_y", PROD, early)
    await registry.apply_update(PROD, "exp_y", 1, lambda f: replace(f, rollout_percentage=60))
    after = await engine.evaluate("exp_y", PROD, early)
    newcomer = await engine.evaluate("exp_y", PROD, late)

    assert before.variant_key == after.variant_key == "control"
    assert newcomer.variant_key == "treatment"


@pytest.mark.asyncio
async def test_zero_and_full_rollout(registry: FlagRegistry, engine: EvaluationEngine):
    await registry.create(boolean_flag(key="none", rollout_percentage=0))
    await registry.create(boolean_flag(key="all", rollout_percentage=100))

    for i in range(200):
        context = EvaluationContext(id=f"user-{i}")
        assert not await engine.is_enabled("none", PROD, context)
        assert await engine.is_enabled("all", PROD, context)


# ============ Variants ============


@pytest.mark.asyncio
async def test_same_context_gets_same_variant(registry: FlagRegistry, engine: EvaluationEngine):
    await registry.create(multivariate_flag())
    context = EvaluationContext(id="user-123")

    first = await engine.evaluate("exp_y", PROD, context)
    second = await engine.evaluate("exp_y", PROD, context)

    assert first.variant_key in {"control", "treatment"}
    assert first == second


@pytest.mark.asyncio
async def test_variant_shares_follow_weights(registry: FlagRegistry, engine: EvaluationEngine):
    await registry.create(multivariate_flag(weights=(20, 80)))

    counts = {"control": 0, "treatment": 0}
    for i in range(5_000):
        decision = await engine.evaluate("exp_y", PROD, EvaluationContext(id=f"user-{i}"))
        counts[decision.variant_key] += 1

    assert 800 <= counts["control"] <= 1200


@pytest.mark.asyncio
async def test_weight_change_can_reassign(registry: FlagRegistry, engine: EvaluationEngine):
    """Moving a range boundary moves the buckets it crosses."""
    await registry.create(multivariate_flag(weights=(50, 50)))
    context = context_in_bucket("exp_y", 45)

    before = await engine.evaluate("exp_y", PROD, context)
    await registry.apply_update(
        PROD, "exp_y", 1,
        lambda f: replace(
            f,
            variants=(replace(f.variants[0], weight=40), replace(f.variants[1], weight=60)),
        ),
    )
    after = await engine.evaluate("exp_y", PROD, context)

    assert before.variant_key == "control"
    assert after.variant_key == "treatment"


def test_boolean_decision_has_no_variant():
    decision = decide(boolean_flag(), EvaluationContext(id="u1"))
    assert decision.enabled is True
    assert decision.variant_key is None


def test_decision_wire_format():
    flag = boolean_flag(rollout_percentage=0, rules=(GERMANY_RULE,))
    decision = decide(flag, EvaluationContext(id="u1", attributes={"country": "DE"}))

    assert decision.to_dict() == {
        "flagKey": "beta_x",
        "isEnabled": True,
        "variantKey": None,
        "matchedRuleId": "dach",
        "reason": "rule_match",
    }


# ============ Evaluate All ============


@pytest.mark.asyncio
async def test_evaluate_all(registry: FlagRegistry, engine: EvaluationEngine):
    await registry.create(boolean_flag(key="on_flag"))
    await registry.create(boolean_flag(key="off_flag", enabled=False))
    await registry.create(boolean_flag(key="elsewhere", environment=Environment.STAGING))

    decisions = await engine.evaluate_all(PROD, EvaluationContext(id="u1"))

    assert set(decisions) == {"on_flag", "off_flag"}
    assert decisions["on_flag"].enabled is True
    assert decisions["off_flag"].reason == DecisionReason.DISABLED


# ============ Failures ============


@pytest.mark.asyncio
async def test_store_outage_is_not_a_decision():
    """An unreachable store raises instead of reporting the flag as off."""
    store = UnavailableFlagStore()
    store.seed([boolean_flag()])
    store.down = True
    engine = EvaluationEngine(FlagRegistry(store))

    with pytest.raises(StoreUnavailableError):
        await engine.evaluate("beta_x", PROD, EvaluationContext(id="u1"))


@pytest.mark.asyncio
async def test_timeout():
    store = SlowFlagStore(delay=1.0)
    store.seed([boolean_flag()])
    engine = EvaluationEngine(FlagRegistry(store), default_timeout=0.01)

    with pytest.raises(EvaluationTimeoutError):
        await engine.evaluate("beta_x", PROD, EvaluationContext(id="u1"))


@pytest.mark.asyncio
async def test_unexpected_fault_wrapped():
    class BrokenStore(MemoryFlagStore):
        async def get(self, environment, key):
            raise RuntimeError("corrupt row")

    engine = EvaluationEngine(FlagRegistry(BrokenStore()))

    with pytest.raises(EvaluationFailedError) as exc_info:
        await engine.evaluate("beta_x", PROD, EvaluationContext(id="u1"))

    assert not isinstance(exc_info.value, EvaluationTimeoutError)
    assert isinstance(exc_info.value.__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_unknown_environment_is_not_found(engine: EvaluationEngine, flag_store: MemoryFlagStore):
    flag_store.seed([boolean_flag()])

    decision = await engine.evaluate("beta_x", "Qa", EvaluationContext(id="u1"))

    assert decision.enabled is False
    assert decision.reason == DecisionReason.NOT_FOUND
    assert await engine.evaluate_all("Qa", EvaluationContext(id="u1")) == {}


@pytest.mark.asyncio
async def test_evaluate_all_timeout():
    class SlowListStore(MemoryFlagStore):
        async def list(self, environment):
            await asyncio.sleep(1.0)
            return await super().list(environment)

    store = SlowListStore()
    store.seed([boolean_flag()])
    engine = EvaluationEngine(FlagRegistry(store), default_timeout=0.01)

    with pytest.raises(EvaluationTimeoutError):
        await engine.evaluate_all(PROD, EvaluationContext(id="u1"))


@pytest.mark.asyncio
async def test_evaluate_all_wraps_unexpected_fault(flag_store: MemoryFlagStore):
    # Seeding skips validation, so these weights leave buckets 90-99 uncovered
    flag_store.seed([multivariate_flag(weights=(50, 40))])
    engine = EvaluationEngine(FlagRegistry(flag_store))

    with pytest.raises(EvaluationFailedError) as exc_info:
        await engine.evaluate_all(PROD, context_in_bucket("exp_y", 95))

    assert isinstance(exc_info.value.__cause__, ValueError)
