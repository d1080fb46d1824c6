"""
Column rule implementations.

Provides validators for required cells, type checks, ranges, regex patterns
and allowed-value lists.
"""

from .allowed_values_validator import AllowedValuesValidator
from .base_validator import BaseValidator, ValidationError
from .range_validator import RangeValidator
from .regex_validator import RegexValidator
from .required_field_validator import RequiredFieldValidator
from .type_validator import TypeValidator, parse_bool, parse_date

__all__ = [
    "AllowedValuesValidator",
    "BaseValidator",
    "ValidationError",
    "RangeValidator",
    "RegexValidator",
    "RequiredFieldValidator",
    "TypeValidator",
    "parse_bool",
    "parse_date",
]
