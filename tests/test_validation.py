"""
Tests for flag definition validation.
"""

from dataclasses import replace

import pytest

from flagengine.core.features import (
    Environment,
    FlagDefinition,
    FlagKind,
    InvalidConfigurationError,
    RuleOperator,
    TargetingRule,
    Variant,
)
from flagengine.core.features.validation import collect_violations, validate_definition

from conftest import boolean_flag, multivariate_flag


def _messages(definition: FlagDefinition) -> list[str]:
    return [v.message for v in collect_violations(definition)]


def test_valid_definitions_pass():
    validate_definition(boolean_flag())
    validate_definition(multivariate_flag(weights=(34, 33, 33)))
    validate_definition(multivariate_flag(weights=(100, 0)))


def test_weights_must_sum_to_100():
    messages = _messages(multivariate_flag(weights=(50, 40)))
    assert "Total traffic weight must equal 100% (got 90%)." in messages


def test_duplicate_variant_keys_rejected():
    messages = _messages(multivariate_flag(weights=(50, 50), keys=("a", "a")))
    assert any(m.startswith("All variant keys must be unique") for m in messages)


def test_all_violations_reported_together():
    """Bad weights and duplicate keys show up in the same error."""
    flag = multivariate_flag(weights=(50, 40), keys=("a", "a"))

    with pytest.raises(InvalidConfigurationError) as exc_info:
        validate_definition(flag)

    messages = [v.message for v in exc_info.value.violations]
    assert "Total traffic weight must equal 100% (got 90%)." in messages
    assert "All variant keys must be unique (duplicates: a)." in messages


def test_boolean_flag_cannot_have_variants():
    flag = replace(
        boolean_flag(),
        variants=(Variant(id="v1", name="On", key="on", weight=100),),
    )
    assert "Boolean flags cannot have variants." in _messages(flag)


def test_multivariate_needs_two_variants():
    flag = multivariate_flag(weights=(100,), keys=("only",))
    assert "Multivariate flags need at least 2 variants." in _messages(flag)


def test_negative_weight_rejected():
    flag = multivariate_flag(weights=(120, -20))
    violations = collect_violations(flag)

    assert [v.field for v in violations] == ["variants[1].weight"]


@pytest.mark.parametrize("rollout", [-1, 101, 50.5])
def test_rollout_out_of_range(rollout):
    flag = boolean_flag(rollout_percentage=rollout)
    assert "Rollout percentage must be an integer between 0 and 100." in _messages(flag)


def test_blank_variant_names_and_keys():
    flag = FlagDefinition(
        key="exp",
        environment=Environment.STAGING,
        name="Experiment",
        kind=FlagKind.MULTIVARIATE,
        variants=(
            Variant(id="v1", name="", key="control", weight=50),
            Variant(id="v2", name="Treatment", key=" ", weight=50),
        ),
    )
    assert "All names and keys must be filled out." in _messages(flag)


def test_blank_key_and_name():
    flag = boolean_flag(key="", name=" ")
    fields = {v.field for v in collect_violations(flag)}
    assert {"key", "name"} <= fields


def test_rule_values_required():
    flag = boolean_flag(
        rules=(
            TargetingRule(id="r1", attribute="country", operator=RuleOperator.ONE_OF, values=()),
            TargetingRule(id="r2", attribute="plan", operator=RuleOperator.EQUALS, values=("",)),
            TargetingRule(id="r3", attribute="", operator=RuleOperator.CONTAINS, values=("x",)),
        ),
    )
    violations = {v.field: v.message for v in collect_violations(flag)}

    assert violations["rules[0].values"] == "ONE_OF rules need a non-empty set of values."
    assert violations["rules[1].values"] == "EQUALS rules need a comparison value."
    assert violations["rules[2].attribute"] == "Rule attribute must not be empty."


def test_duplicate_rule_ids_rejected():
    rule = TargetingRule(id="r1", attribute="plan", operator=RuleOperator.EQUALS, values=("pro",))
    flag = boolean_flag(rules=(rule, rule))
    assert "Rule ids must be unique." in _messages(flag)


def test_error_payload_lists_violations():
    with pytest.raises(InvalidConfigurationError) as exc_info:
        validate_definition(multivariate_flag(weights=(50, 40)))

    payload = exc_info.value.to_dict()
    assert payload["error"] == "invalid_configuration"
    assert payload["violations"] == [
        {"field": "variants", "message": "Total traffic weight must equal 100% (got 90%)."}
    ]
