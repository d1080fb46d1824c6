"""
TypeValidator - checks that a cell value is (or can be read as) a given type.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from .base_validator import BaseValidator

_TRUE_STRINGS = ("true", "1", "yes", "y", "oui")
_FALSE_STRINGS = ("false", "0", "no", "n", "non")

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%Y/%m/%d")


def parse_date(value: Any) -> date:
    """
    Read a workbook or staged value as a date.

    Accepts date/datetime objects and ISO (or dd/mm/yyyy) strings.

    Raises:
        ValueError: If the value is not a date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
        # ISO datetimes such as "2025-09-01T00:00:00"
        return datetime.fromisoformat(text).date()
    raise ValueError(f"Cannot read {type(value).__name__} as a date")


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        if value in (0, 1):
            return bool(value)
        raise ValueError(f"Cannot read {value!r} as boolean")
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"Cannot read {value!r} as boolean")


def _parse_integer(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("boolean is not an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{value} has a fractional part")
        return int(value)
    return int(str(value).strip())


def _parse_decimal(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, int | float):
        return float(value)
    try:
        return float(Decimal(str(value).strip()))
    except InvalidOperation as e:
        raise ValueError(f"'{value}' is not a number") from e


def _parse_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, int | float) and not isinstance(value, bool):
        # Excel stores codes like 100200 as numbers
        return str(int(value)) if isinstance(value, float) and value.is_integer() else str(value)
    raise ValueError(f"{type(value).__name__} is not text")


class TypeValidator(BaseValidator):
    """
    Validates that a value matches the expected column type.

    Parameters:
    - expected_type: string, integer, decimal, boolean or date
      (aliases str, int, float, bool accepted)
    - coerce: when False, only values already of the Python type pass
    """

    PARSERS = {
        "string": _parse_string,
        "integer": _parse_integer,
        "decimal": _parse_decimal,
        "boolean": parse_bool,
        "date": parse_date,
    }

    ALIASES = {
        "str": "string",
        "int": "integer",
        "float": "decimal",
        "double": "decimal",
        "number": "decimal",
        "bool": "boolean",
        "datetime": "date",
    }

    STRICT_TYPES = {
        "string": str,
        "integer": int,
        "decimal": int | float,
        "boolean": bool,
        "date": date,
    }

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        expected_type = self.parameters.get("expected_type")
        if not expected_type:
            raise ValueError("TypeValidator requires 'expected_type' parameter")

        type_name = str(expected_type).lower()
        type_name = self.ALIASES.get(type_name, type_name)
        if type_name not in self.PARSERS:
            raise ValueError(f"Unsupported type: {expected_type}")

        self.expected_type = type_name
        self.coerce = self.parameters.get("coerce", True)

    def validate(self, value: Any, row: dict[str, Any]) -> None:
        # Blank cells are the required_field rule's concern
        if value is None:
            return

        if not self.coerce:
            if not isinstance(value, self.STRICT_TYPES[self.expected_type]) or (
                isinstance(value, bool) and self.expected_type != "boolean"
            ):
                raise self.fail(f"Expected {self.expected_type}, got {type(value).__name__}")
            return

        try:
            self.convert(value)
        except (ValueError, TypeError) as e:
            raise self.fail(f"Cannot read {value!r} as {self.expected_type}: {e}") from e

    def convert(self, value: Any) -> Any:
        """Parse value into the column type (raises ValueError)."""
        return self.PARSERS[self.expected_type](value)

    @property
    def rule_type(self) -> str:
        return "type_check"
