"""
Document catalog entry: the permanent per-client document record.
"""

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from .common import utcnow


class AgeStatus(StrEnum):
    """Document-age category; exactly one applies to every catalog row."""

    TWELVE_CONSECUTIVE_MONTHS = "TwelveConsecutiveMonths"
    BRAND_NEW_FUND = "BrandNewFund"
    NEW_FUND = "NewFund"
    NEW_SERIES = "NewSeries"


class DocumentCatalogEntry(BaseModel):
    """
    Persistent per-client document record consumed by the Publisher system.

    Attributes:
        client_id: Owning client
        document_number: Document key within the client
        fund_code: Fund the document belongs to
        inception_date: Fund/series inception
        age_status: Document-age category
        active: Whether the document is published
        last_filing_date: Filing date of the most recent import
        fund_name: Fund name as filed
        translated_name: Fund name in the client's target language
        version: Optimistic concurrency version (0 = never written)
        last_job_id: Job that last wrote the row
    """

    model_config = ConfigDict(
        validate_assignment=True,
        json_schema_extra={
            "example": {
                "client_id": "ACME",
                "document_number": "DOC-000123",
                "fund_code": "ACM100",
                "inception_date": "2024-09-01",
                "age_status": "TwelveConsecutiveMonths",
                "active": True,
                "last_filing_date": "2025-09-01",
                "fund_name": "Acme Balanced Fund",
                "translated_name": "Fonds équilibré Acme",
                "version": 3,
                "last_job_id": "5d0c1b4e7f2a4c7e9a0b1c2d3e4f5a6b",
            }
        },
    )

    client_id: str = Field(..., min_length=1)
    document_number: str = Field(..., min_length=1)
    fund_code: str = Field(..., min_length=1)
    inception_date: date | None = None
    age_status: AgeStatus
    active: bool = True
    last_filing_date: date | None = None
    fund_name: str | None = None
    translated_name: str | None = None
    version: int = Field(0, ge=0)
    last_job_id: str | None = None
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str]:
        return (self.client_id, self.document_number)
