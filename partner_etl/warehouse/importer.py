"""
Import of rule-processed staged jobs into the document catalog.
"""

from typing import Literal

from pydantic import BaseModel, ValidationError

from partner_etl.core.errors import CatalogWriteConflict
from partner_etl.core.models.catalog_entry import DocumentCatalogEntry
from partner_etl.core.models.staged_record import StagedRecordSet, catalog_key
from partner_etl.observability import metrics
from partner_etl.observability.logger import get_logger

from .catalog import CatalogKey, CatalogStore
from .staging import StagingStore

logger = get_logger(__name__)


class ImportOutcome(BaseModel):
    status: Literal["Imported", "Rejected"]
    job_id: str
    rows_imported: int = 0
    reason: str | None = None

    @classmethod
    def imported(cls, job_id: str, rows: int) -> "ImportOutcome":
        return cls(status="Imported", job_id=job_id, rows_imported=rows)

    @classmethod
    def rejected(cls, job_id: str, reason: str) -> "ImportOutcome":
        return cls(status="Rejected", job_id=job_id, reason=reason)

    @property
    def is_imported(self) -> bool:
        return self.status == "Imported"


class ImportExecutor:
    """
    Commits a job's staged rows to the catalog, all or nothing.

    Args:
        staging: Staging store holding rule-processed rows
        catalog: Catalog receiving the rows
    """

    def __init__(self, staging: StagingStore, catalog: CatalogStore):
        self.staging = staging
        self.catalog = catalog

    def build_entries(
        self, record_set: StagedRecordSet
    ) -> tuple[list[DocumentCatalogEntry], dict[CatalogKey, int]] | str:
        """
        Catalog entries for every staged row, or the reason they cannot be built.
        """
        entries = []
        expected: dict[CatalogKey, int] = {}
        fund_name_field = record_set.translated_field("fund_name")

        for idx, values in enumerate(record_set.all_values(), start=1):
            document_number = values.get("document_number")
            if not document_number:
                return f"Row {idx}: document_number is missing"

            key = catalog_key(record_set.client_id, str(document_number))
            if key not in record_set.catalog_versions:
                return f"Row {idx}: document {document_number} was not rule-processed"

            try:
                entry = DocumentCatalogEntry(
                    client_id=record_set.client_id,
                    document_number=str(document_number),
                    fund_code=str(values.get("fund_code") or ""),
                    inception_date=values.get("inception_date"),
                    age_status=values.get("age_status"),
                    active=values.get("active", True),
                    last_filing_date=values.get("last_filing_date"),
                    fund_name=values.get("fund_name"),
                    translated_name=values.get(fund_name_field),
                )
            except ValidationError as e:
                problems = "; ".join(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors())
                return f"Row {idx}: {problems}"

            if entry.key in expected:
                return f"Row {idx}: document {document_number} appears more than once"
            expected[entry.key] = record_set.catalog_versions[key]
            entries.append(entry)

        return entries, expected

    def execute(self, job_id: str) -> ImportOutcome:
        """
        Import a staged job.

        Returns:
            Imported, or Rejected(reason) with nothing written

        Raises:
            StagedSetMissing: If the job has no staged rows
            CatalogWriteConflict: If a row changed since rule processing
        """
        record_set = self.staging.load(job_id)
        built = self.build_entries(record_set)
        if isinstance(built, str):
            logger.warning("Import rejected", extra={"job_id": job_id, "reason": built})
            return ImportOutcome.rejected(job_id, built)

        entries, expected = built
        try:
            self.catalog.commit(entries, expected, job_id)
        except CatalogWriteConflict as e:
            metrics.increment_counter(metrics.catalog_conflicts_total, client_id=record_set.client_id)
            e.file_name = record_set.file_name
            raise

        self.staging.finalize(job_id)
        metrics.increment_counter(metrics.catalog_rows_written_total, len(entries), client_id=record_set.client_id)
        logger.info(
            "Job imported",
            extra={"job_id": job_id, "client_id": record_set.client_id, "rows": len(entries)},
        )
        return ImportOutcome.imported(job_id, len(entries))
