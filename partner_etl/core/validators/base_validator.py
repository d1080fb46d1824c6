"""
Base validator interface for column rules.

Every rule type a template column can declare is implemented by a
BaseValidator subclass; the rule engine instantiates them by rule type.
"""

from abc import ABC, abstractmethod
from typing import Any


class ValidationError(Exception):
    """Raised by a validator when a cell value breaks its rule."""

    def __init__(self, rule_name: str, field_name: str, message: str):
        self.rule_name = rule_name
        self.field_name = field_name
        self.message = message
        super().__init__(f"[{rule_name}] {field_name}: {message}")


class BaseValidator(ABC):
    """
    Abstract base class for column validators.

    Args:
        field_name: Staged field the column maps to
        parameters: Rule parameters from the template (e.g. min/max for range)
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        self.field_name = field_name
        self.parameters = parameters or {}

    @abstractmethod
    def validate(self, value: Any, row: dict[str, Any]) -> None:
        """
        Check one cell value.

        Args:
            value: The cell value (None for a blank cell)
            row: Every field of the data row, for cross-field checks

        Raises:
            ValidationError: If the value breaks the rule
        """

    @property
    @abstractmethod
    def rule_type(self) -> str:
        """Rule type identifier used in templates and metrics."""

    def fail(self, message: str) -> ValidationError:
        return ValidationError(rule_name=self.rule_type, field_name=self.field_name, message=message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(field={self.field_name}, params={self.parameters})"
