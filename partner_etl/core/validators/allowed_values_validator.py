"""
AllowedValuesValidator - cell value must be one of a fixed list.
"""

from typing import Any

from .base_validator import BaseValidator


class AllowedValuesValidator(BaseValidator):
    """
    Parameters:
    - values: the allowed values
    - case_sensitive: compare text exactly (default False)
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        values = self.parameters.get("values")
        if not values or not isinstance(values, list | tuple | set):
            raise ValueError("AllowedValuesValidator requires a non-empty 'values' list")

        self.case_sensitive = self.parameters.get("case_sensitive", False)
        self.values = list(values)
        self._normalized = {self._normalize(v) for v in self.values}

    def _normalize(self, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value if self.case_sensitive else value.lower()
        return value

    def validate(self, value: Any, row: dict[str, Any]) -> None:
        if value is None:
            return

        if self._normalize(value) not in self._normalized:
            raise self.fail(f"Value {value!r} is not one of {self.values}")

    @property
    def rule_type(self) -> str:
        return "allowed_values"
