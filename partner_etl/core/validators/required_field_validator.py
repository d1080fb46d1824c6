"""
RequiredFieldValidator - a cell must hold a non-blank value.
"""

from typing import Any

from .base_validator import BaseValidator


class RequiredFieldValidator(BaseValidator):
    """
    Fails when the column is absent from the row, the cell is empty, or the
    cell holds only whitespace (unless allow_empty_string is set).
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.allow_empty_string = self.parameters.get("allow_empty_string", False)

    def validate(self, value: Any, row: dict[str, Any]) -> None:
        if self.field_name not in row:
            raise self.fail("Column is missing from row")

        if value is None:
            raise self.fail("Value is required")

        if not self.allow_empty_string and isinstance(value, str) and not value.strip():
            raise self.fail("Value is blank")

    @property
    def rule_type(self) -> str:
        return "required_field"
