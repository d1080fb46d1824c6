"""
Template models: the expected shape of a partner workbook.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

RuleType = Literal["required_field", "type_check", "range", "regex", "allowed_values"]


class RuleSpec(BaseModel):
    """One rule check applied to a column's values."""

    type: RuleType
    params: dict[str, Any] = Field(default_factory=dict)
    severity: Literal["error", "warning"] = "error"
    name: str | None = None
    enabled: bool = True


class ColumnSpec(BaseModel):
    """
    A column of a template sheet.

    Attributes:
        header: Header text expected in the sheet's header row
        field: Staged field name the column's values are stored under
        required: Whether the header must be present (structural check)
        rules: Value-level checks applied to each data row
    """

    header: str = Field(..., min_length=1)
    field: str = Field(..., min_length=1)
    required: bool = True
    rules: list[RuleSpec] = Field(default_factory=list)


class SheetSpec(BaseModel):
    name: str = Field(..., min_length=1)
    header_row: int = Field(1, ge=1)
    columns: list[ColumnSpec] = Field(..., min_length=1)


class Template(BaseModel):
    """
    Validation template for one partner file type.

    Attributes:
        name: Template name files resolve to
        client_id: Client the documents of this file type belong to
        sheets: Worksheets the workbook must contain
        translated_fields: Staged fields that need a translation
        target_language: Language suffix of translated fields
        source: Where the definition was loaded from
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "fund_documents",
                "client_id": "ACME",
                "sheets": [{
                    "name": "Funds",
                    "header_row": 1,
                    "columns": [
                        {"header": "Document Number", "field": "document_number",
                         "rules": [{"type": "required_field"}]},
                        {"header": "Inception Date", "field": "inception_date",
                         "rules": [{"type": "type_check", "params": {"expected_type": "date"}}]},
                    ],
                }],
                "translated_fields": ["fund_name"],
                "target_language": "fr",
            }
        }
    )

    name: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    description: str | None = None
    sheets: list[SheetSpec] = Field(..., min_length=1)
    translated_fields: list[str] = Field(default_factory=list)
    target_language: str = "fr"
    source: str | None = None

    @model_validator(mode="after")
    def _check_fields_unique(self) -> "Template":
        seen: set[str] = set()
        for sheet in self.sheets:
            for column in sheet.columns:
                if column.field in seen:
                    raise ValueError(f"field '{column.field}' is mapped by more than one column")
                seen.add(column.field)
        unknown = set(self.translated_fields) - seen
        if unknown:
            raise ValueError(f"translated_fields reference unknown fields: {sorted(unknown)}")
        return self

    @property
    def fields(self) -> list[str]:
        return [c.field for s in self.sheets for c in s.columns]
