"""
RangeValidator - numeric (or date) bounds on a cell value.
"""

from datetime import date
from typing import Any

from .base_validator import BaseValidator
from .type_validator import parse_date


class RangeValidator(BaseValidator):
    """
    Validates that a value lies within the given bounds.

    Parameters:
    - min / max: inclusive bounds
    - min_exclusive / max_exclusive: exclusive bounds

    Bounds given as dates (or ISO date strings) compare the value as a date.
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        self.bounds = {
            key: self.parameters.get(key)
            for key in ("min", "max", "min_exclusive", "max_exclusive")
        }
        if all(v is None for v in self.bounds.values()):
            raise ValueError("RangeValidator requires at least one of: min, max, min_exclusive, max_exclusive")

        self.date_bounds = any(
            isinstance(v, date) or (isinstance(v, str) and v) for v in self.bounds.values()
        )
        if self.date_bounds:
            self.bounds = {k: parse_date(v) if v is not None else None for k, v in self.bounds.items()}

    def _comparable(self, value: Any) -> Any:
        if self.date_bounds:
            try:
                return parse_date(value)
            except ValueError as e:
                raise self.fail(f"Value must be a date, got {value!r}") from e

        if isinstance(value, bool) or not isinstance(value, int | float):
            try:
                return float(str(value).strip())
            except ValueError as e:
                raise self.fail(f"Value must be numeric, got {type(value).__name__}") from e
        return value

    def validate(self, value: Any, row: dict[str, Any]) -> None:
        if value is None:
            return

        value = self._comparable(value)
        low, high = self.bounds["min"], self.bounds["max"]
        low_x, high_x = self.bounds["min_exclusive"], self.bounds["max_exclusive"]

        if low is not None and value < low:
            raise self.fail(f"Value {value} is less than minimum {low}")
        if low_x is not None and value <= low_x:
            raise self.fail(f"Value {value} must be greater than {low_x}")
        if high is not None and value > high:
            raise self.fail(f"Value {value} exceeds maximum {high}")
        if high_x is not None and value >= high_x:
            raise self.fail(f"Value {value} must be less than {high_x}")

    @property
    def rule_type(self) -> str:
        return "range"
