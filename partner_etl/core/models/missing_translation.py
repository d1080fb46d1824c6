"""
MissingTranslation model: a field value with no translation on file.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .common import utcnow


class MissingTranslation(BaseModel):
    """Written in bulk, insert-if-absent; never updated."""

    model_config = ConfigDict(frozen=True)

    client_id: str = Field(..., min_length=1)
    field_name: str = Field(..., min_length=1)
    source_text: str
    language: str = "fr"
    job_id: str | None = None
    discovered_at: datetime = Field(default_factory=utcnow)

    @property
    def dedupe_key(self) -> tuple[str, str]:
        return (self.client_id, self.field_name)


def dedupe_missing(records: list[MissingTranslation]) -> list[MissingTranslation]:
    """Keep the first record per (client, field), preserving order."""
    seen: set[tuple[str, str]] = set()
    unique = []
    for record in records:
        if record.dedupe_key in seen:
            continue
        seen.add(record.dedupe_key)
        unique.append(record)
    return unique
