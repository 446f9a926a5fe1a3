"""
Flag definition validation.

Every constraint is checked and all violations are reported together,
so an operator console can highlight every offending field at once.
"""

from collections import Counter

from .bucketing import BUCKET_COUNT
from .exceptions import InvalidConfigurationError, Violation
from .interfaces import FlagDefinition, FlagKind, RuleOperator

MIN_VARIANTS = 2


def collect_violations(definition: FlagDefinition) -> list[Violation]:
    """Return every violated constraint, in field order."""
    violations: list[Violation] = []

    if not definition.key or not definition.key.strip():
        violations.append(Violation("key", "Flag key must not be empty."))
    if not definition.name or not definition.name.strip():
        violations.append(Violation("name", "Flag name must not be empty."))

    rollout = definition.rollout_percentage
    if isinstance(rollout, bool) or not isinstance(rollout, int) or not 0 <= rollout <= 100:
        violations.append(
            Violation("rollout_percentage", "Rollout percentage must be an integer between 0 and 100.")
        )

    if definition.kind == FlagKind.BOOLEAN:
        if definition.variants:
            violations.append(Violation("variants", "Boolean flags cannot have variants."))
    else:
        violations.extend(_variant_violations(definition))

    violations.extend(_rule_violations(definition))
    return violations


def _variant_violations(definition: FlagDefinition) -> list[Violation]:
    violations = []
    variants = definition.variants

    if len(variants) < MIN_VARIANTS:
        violations.append(
            Violation("variants", f"Multivariate flags need at least {MIN_VARIANTS} variants.")
        )

    weights_valid = True
    for i, variant in enumerate(variants):
        weight = variant.weight
        if isinstance(weight, bool) or not isinstance(weight, int) or weight < 0:
            weights_valid = False
            violations.append(
                Violation(f"variants[{i}].weight", "Variant weights must be non-negative integers.")
            )

    if weights_valid and variants:
        total = sum(v.weight for v in variants)
        if total != BUCKET_COUNT:
            violations.append(
                Violation("variants", f"Total traffic weight must equal 100% (got {total}%).")
            )

    if any(not (v.key or "").strip() or not (v.name or "").strip() for v in variants):
        violations.append(Violation("variants", "All names and keys must be filled out."))

    counts = Counter(v.key for v in variants if (v.key or "").strip())
    duplicates = sorted(key for key, n in counts.items() if n > 1)
    if duplicates:
        violations.append(
            Violation("variants", f"All variant keys must be unique (duplicates: {', '.join(duplicates)}).")
        )

    ids = Counter(v.id for v in variants)
    if any(n > 1 for n in ids.values()):
        violations.append(Violation("variants", "Variant ids must be unique."))

    return violations


def _rule_violations(definition: FlagDefinition) -> list[Violation]:
    violations = []
    ids = Counter(rule.id for rule in definition.rules)
    if any(n > 1 for n in ids.values()):
        violations.append(Violation("rules", "Rule ids must be unique."))

    for i, rule in enumerate(definition.rules):
        if not (rule.attribute or "").strip():
            violations.append(Violation(f"rules[{i}].attribute", "Rule attribute must not be empty."))

        if rule.operator == RuleOperator.ONE_OF:
            if not rule.values:
                violations.append(
                    Violation(f"rules[{i}].values", "ONE_OF rules need a non-empty set of values.")
                )
        elif not rule.values or rule.values[0] == "":
            violations.append(
                Violation(f"rules[{i}].values", f"{rule.operator.value} rules need a comparison value.")
            )

    return violations


def validate_definition(definition: FlagDefinition) -> None:
    """Raise InvalidConfigurationError listing every violation."""
    violations = collect_violations(definition)
    if violations:
        raise InvalidConfigurationError(violations)
