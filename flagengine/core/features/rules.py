"""
Targeting rule matching.

Comparisons are case-sensitive string comparisons with no type
coercion. A missing or non-string attribute never matches, and nothing
here raises: a malformed context only means the rule does not apply.
"""

from typing import Iterable

from .interfaces import EvaluationContext, RuleOperator, TargetingRule


def matches(rule: TargetingRule, context: EvaluationContext) -> bool:
    """Check if a single rule matches the context."""
    attributes = context.attributes or {}
    if rule.attribute not in attributes:
        return False

    actual = attributes[rule.attribute]
    if not isinstance(actual, str) or not rule.values:
        return False

    if rule.operator == RuleOperator.EQUALS:
        return actual == rule.values[0]
    if rule.operator == RuleOperator.CONTAINS:
        return rule.values[0] in actual
    if rule.operator == RuleOperator.ONE_OF:
        return actual in rule.values

    return False


def first_match(
    rules: Iterable[TargetingRule],
    context: EvaluationContext,
) -> TargetingRule | None:
    """Rules are evaluated in order; first match wins."""
    for rule in rules:
        if matches(rule, context):
            return rule
    return None
