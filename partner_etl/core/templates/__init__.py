"""
Template resolution and workbook validation.
"""

from .resolver import (
    TemplateResolver,
    derive_template_name,
    field_name_for_header,
    load_xlsx_template,
    load_yaml_template,
)
from .validator import TemplateValidator

__all__ = [
    "TemplateResolver",
    "TemplateValidator",
    "derive_template_name",
    "field_name_for_header",
    "load_xlsx_template",
    "load_yaml_template",
]
