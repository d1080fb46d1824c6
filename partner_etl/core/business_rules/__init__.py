"""
Business rules: document-age classification and staged-row decisioning.
"""

from .age_classification import AgeClassificationInput, classify_document_age, full_months_between
from .engine import BusinessRuleEngine, RuleOutcome

__all__ = [
    "AgeClassificationInput",
    "BusinessRuleEngine",
    "RuleOutcome",
    "classify_document_age",
    "full_months_between",
]
