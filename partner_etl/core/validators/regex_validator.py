"""
RegexValidator - cell text must match a pattern.
"""

import re
from typing import Any

from .base_validator import BaseValidator


class RegexValidator(BaseValidator):
    """
    Parameters:
    - pattern: regular expression, anchored at the start (re.match)
    - ignore_case: match case-insensitively
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        pattern = self.parameters.get("pattern")
        if not pattern:
            raise ValueError("RegexValidator requires 'pattern' parameter")

        flags = re.IGNORECASE if self.parameters.get("ignore_case") else 0
        try:
            self.pattern = re.compile(pattern, flags)
        except re.error as e:
            raise ValueError(f"Invalid regex pattern: {e}") from e

    def validate(self, value: Any, row: dict[str, Any]) -> None:
        if value is None:
            return

        text = value if isinstance(value, str) else str(value)
        if not self.pattern.match(text):
            raise self.fail(f"Value '{text}' does not match pattern '{self.pattern.pattern}'")

    @property
    def rule_type(self) -> str:
        return "regex"
