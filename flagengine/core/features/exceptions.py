"""
Feature flag error taxonomy.

Rule matching and bucketing never fail; everything fallible lives at the
registry / pipeline boundary and raises one of these.
"""

from dataclasses import dataclass
from typing import Any


class FeatureFlagError(Exception):
    """Base class. `code` is the machine-readable error name."""

    code = "feature_flag_error"

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": str(self)}


class NotFoundError(FeatureFlagError):
    code = "not_found"


class FlagNotFoundError(NotFoundError):
    def __init__(self, environment: Any, key: str):
        self.environment = environment
        self.key = key
        env = getattr(environment, "value", environment)
        super().__init__(f"Feature flag '{key}' not found in {env}")


class VariantNotFoundError(NotFoundError):
    def __init__(self, flag_key: str, variant_id: str):
        self.flag_key = flag_key
        self.variant_id = variant_id
        super().__init__(f"Variant '{variant_id}' not found on flag '{flag_key}'")


class RuleNotFoundError(NotFoundError):
    def __init__(self, flag_key: str, rule_id: str):
        self.flag_key = flag_key
        self.rule_id = rule_id
        super().__init__(f"Rule '{rule_id}' not found on flag '{flag_key}'")


class FlagAlreadyExistsError(FeatureFlagError):
    code = "already_exists"

    def __init__(self, environment: Any, key: str):
        self.environment = environment
        self.key = key
        env = getattr(environment, "value", environment)
        super().__init__(f"Feature flag '{key}' already exists in {env}")


class VersionConflictError(FeatureFlagError):
    """Optimistic write lost the race. Re-fetch and retry."""

    code = "version_conflict"

    def __init__(self, key: str, expected_version: int, current_version: int):
        self.key = key
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(
            f"Feature flag '{key}' is at version {current_version}, "
            f"expected {expected_version}"
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["currentVersion"] = self.current_version
        data["expectedVersion"] = self.expected_version
        return data


@dataclass(frozen=True)
class Violation:
    """One failed validation constraint."""
    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class InvalidConfigurationError(FeatureFlagError):
    """Carries every violated constraint, not just the first."""

    code = "invalid_configuration"

    def __init__(self, violations: list[Violation]):
        self.violations = list(violations)
        summary = "; ".join(v.message for v in self.violations)
        super().__init__(f"Invalid flag configuration: {summary}")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["violations"] = [v.to_dict() for v in self.violations]
        return data


class StoreUnavailableError(FeatureFlagError):
    """The backing store could not be reached."""

    code = "store_unavailable"


class EvaluationFailedError(FeatureFlagError):
    """Unexpected internal fault during evaluation."""

    code = "evaluation_failed"


class EvaluationTimeoutError(EvaluationFailedError):
    code = "evaluation_timeout"
