"""
Rule engine for applying column rules to workbook rows.

The engine instantiates one validator per enabled rule, runs every rule on
every row, and reports all failures rather than stopping at the first one.
"""

from dataclasses import dataclass
from typing import Any

from partner_etl.core.models.template import SheetSpec
from partner_etl.core.validators import (
    AllowedValuesValidator,
    BaseValidator,
    RangeValidator,
    RegexValidator,
    RequiredFieldValidator,
    TypeValidator,
    ValidationError,
)

from .rule_config import column_rules


@dataclass(frozen=True)
class RuleFailure:
    """A rule that failed on one field of one row."""

    rule_name: str
    rule_type: str
    field_name: str
    severity: str
    message: str


class RuleEngine:
    """
    Applies column rules to data rows.

    Args:
        rules: Rule configurations, each containing:
               - rule_name: str
               - rule_type: str (required_field, type_check, range, regex, allowed_values)
               - field_name: str
               - parameters: dict (optional)
               - severity: str (error or warning)
               - enabled: bool (default True)
    """

    VALIDATOR_REGISTRY: dict[str, type[BaseValidator]] = {
        "required_field": RequiredFieldValidator,
        "type_check": TypeValidator,
        "range": RangeValidator,
        "regex": RegexValidator,
        "allowed_values": AllowedValuesValidator,
    }

    def __init__(self, rules: list[dict[str, Any]]):
        self.rules = rules
        self.validators: list[tuple[str, str, BaseValidator]] = []
        self._build_validators()

    @classmethod
    def for_sheet(cls, sheet: SheetSpec) -> "RuleEngine":
        return cls(column_rules(sheet))

    def _build_validators(self) -> None:
        for rule in self.rules:
            if not rule.get("enabled", True):
                continue

            rule_name = rule["rule_name"]
            rule_type = rule["rule_type"]
            validator_class = self.VALIDATOR_REGISTRY.get(rule_type)
            if not validator_class:
                raise ValueError(f"Unknown rule type: {rule_type}")

            try:
                validator = validator_class(rule["field_name"], rule.get("parameters", {}))
            except ValueError as e:
                raise ValueError(f"Failed to create validator for rule '{rule_name}': {e}") from e

            self.validators.append((rule_name, rule.get("severity", "error"), validator))

    def check_row(self, row: dict[str, Any]) -> list[RuleFailure]:
        """
        Run every rule against one row.

        Args:
            row: Field name to cell value

        Returns:
            Failures in rule order (empty when the row is clean)
        """
        failures = []
        for rule_name, severity, validator in self.validators:
            try:
                validator.validate(row.get(validator.field_name), row)
            except ValidationError as e:
                failures.append(RuleFailure(
                    rule_name=rule_name,
                    rule_type=validator.rule_type,
                    field_name=validator.field_name,
                    severity=severity,
                    message=e.message,
                ))
        return failures

    def type_converters(self) -> dict[str, TypeValidator]:
        """Type-check validators by field, used to normalize staged values."""
        return {
            v.field_name: v
            for _, _, v in self.validators
            if isinstance(v, TypeValidator)
        }

    def get_rule_summary(self) -> dict[str, Any]:
        return {
            "total_rules": len(self.validators),
            "rules_by_type": self._count_by(lambda _, __, v: v.rule_type),
            "rules_by_severity": self._count_by(lambda _, severity, __: severity),
        }

    def _count_by(self, key) -> dict[str, int]:
        counts: dict[str, int] = {}
        for entry in self.validators:
            k = key(*entry)
            counts[k] = counts.get(k, 0) + 1
        return counts
