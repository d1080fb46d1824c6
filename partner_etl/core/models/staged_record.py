"""
Staged record set: job-scoped rows awaiting business rules and import.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .common import utcnow


class StagedField(BaseModel):
    """A staged value and the last time it was written."""

    value: Any = None
    updated_at: datetime = Field(default_factory=utcnow)


def write_if_changed(
    fields: dict[str, StagedField],
    name: str,
    value: Any,
    now: datetime | None = None,
) -> bool:
    """
    Set fields[name] to value unless it already holds an equal value.

    Every staged-field mutation goes through here; an unchanged value keeps
    its updated_at stamp.

    Returns:
        True when the field was written
    """
    current = fields.get(name)
    if current is not None and current.value == value:
        return False
    fields[name] = StagedField(value=value, updated_at=now or utcnow())
    return True


def catalog_key(client_id: str, document_number: str) -> str:
    return f"{client_id}|{document_number}"


class StagedRecordSet(BaseModel):
    """
    Rows staged under one job id.

    Attributes:
        job_id: Owning job
        client_id: Client the rows belong to (from the template)
        template_name: Template the rows were validated against
        file_name: Source file
        batch_id: Source batch, if any
        translated_fields: Fields the rule engine translates
        target_language: Suffix of translated fields ("fund_name_fr")
        rows: One mapping of field name to StagedField per data row
        catalog_versions: Catalog versions observed by the rule engine,
            keyed by "client|document_number" (0 = not in catalog)
    """

    job_id: str = Field(..., min_length=1)
    client_id: str
    template_name: str
    file_name: str
    batch_id: str | None = None
    translated_fields: list[str] = Field(default_factory=list)
    target_language: str = "fr"
    rows: list[dict[str, StagedField]] = Field(default_factory=list)
    catalog_versions: dict[str, int] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_values(
        cls,
        job_id: str,
        rows: list[dict[str, Any]],
        now: datetime | None = None,
        **metadata: Any,
    ) -> "StagedRecordSet":
        stamp = now or utcnow()
        staged_rows = []
        for row in rows:
            fields: dict[str, StagedField] = {}
            for name, value in row.items():
                write_if_changed(fields, name, value, stamp)
            staged_rows.append(fields)
        return cls(job_id=job_id, rows=staged_rows, **metadata)

    def set_field(self, row_index: int, name: str, value: Any, now: datetime | None = None) -> bool:
        return write_if_changed(self.rows[row_index], name, value, now)

    def values(self, row_index: int) -> dict[str, Any]:
        return {name: f.value for name, f in self.rows[row_index].items()}

    def all_values(self) -> list[dict[str, Any]]:
        return [self.values(i) for i in range(len(self.rows))]

    def __len__(self) -> int:
        return len(self.rows)

    def translated_field(self, field: str) -> str:
        return f"{field}_{self.target_language}"
