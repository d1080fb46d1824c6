"""
ValidationResult model: the outcome of validating one file (immutable).
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ValidationMessage(BaseModel):
    """A single (location, message) pair."""

    model_config = ConfigDict(frozen=True)

    location: str
    message: str
    rule_name: str
    rule_type: str = "structural"
    severity: Literal["error", "warning"] = "error"

    def __str__(self) -> str:
        return f"{self.location}: {self.message}"


class ValidationResult(BaseModel):
    """
    Outcome of validating a file against its template.

    Produced once per validation attempt and never mutated.

    Attributes:
        passed: No error-severity message was produced
        messages: Error messages, in workbook order
        warnings: Non-blocking messages
        rows_checked: Data rows the semantic rules ran on
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "passed": False,
                "messages": [
                    {"location": "Funds!B7", "message": "Field value is null",
                     "rule_name": "fund_code_required", "rule_type": "required_field"},
                ],
                "warnings": [],
                "rows_checked": 12,
            }
        },
    )

    passed: bool
    messages: tuple[ValidationMessage, ...] = Field(default_factory=tuple)
    warnings: tuple[ValidationMessage, ...] = Field(default_factory=tuple)
    rows_checked: int = 0

    @model_validator(mode="after")
    def _check_passed_consistency(self) -> "ValidationResult":
        if self.passed and self.messages:
            raise ValueError("passed=True but messages is not empty")
        if not self.passed and not self.messages:
            raise ValueError("passed=False requires at least one message")
        return self

    def error_list(self) -> list[str]:
        return [str(m) for m in self.messages]
