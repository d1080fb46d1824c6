"""
Column rule engine and template rule configuration.
"""

from .rule_config import TemplateBuilder, column_rules
from .rule_engine import RuleEngine, RuleFailure

__all__ = [
    "RuleEngine",
    "RuleFailure",
    "TemplateBuilder",
    "column_rules",
]
