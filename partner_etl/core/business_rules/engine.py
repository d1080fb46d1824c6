"""
Business rule processing of staged rows.

For every staged row the engine derives the catalog-facing fields
(age_status, active, last_filing_date and translations) from the row values
plus a catalog snapshot read up front. A staged field is written only when
its computed value differs from the staged one, so a second run over
unchanged catalog state writes nothing.
"""

from collections import Counter
from datetime import date
from typing import Any

from pydantic import BaseModel, Field

from partner_etl.core.errors import PermanentInputError
from partner_etl.core.models.common import utcnow
from partner_etl.core.models.missing_translation import MissingTranslation, dedupe_missing
from partner_etl.core.models.staged_record import StagedRecordSet, catalog_key
from partner_etl.core.validators import parse_bool, parse_date
from partner_etl.observability import metrics
from partner_etl.observability.logger import get_logger
from partner_etl.warehouse.catalog import CatalogSnapshot, CatalogStore
from partner_etl.warehouse.staging import FieldChange, StagingStore
from partner_etl.warehouse.translations import TranslationStore

from .age_classification import AgeClassificationInput, classify_document_age

logger = get_logger(__name__)

# Staged fields the engine reads
DOCUMENT_NUMBER = "document_number"
FUND_CODE = "fund_code"
INCEPTION_DATE = "inception_date"
FILING_DATE = "filing_date"
ACTIVE = "active"

# Staged fields the engine computes
AGE_STATUS = "age_status"
LAST_FILING_DATE = "last_filing_date"


class RuleOutcome(BaseModel):
    """What one rule-processing run did."""

    job_id: str
    rows: int
    fields_written: int
    classifications: dict[str, int] = Field(default_factory=dict)
    missing_translations: int = 0
    catalog_versions: dict[str, int] = Field(default_factory=dict)


def _optional_date(value: Any) -> date | None:
    if value is None:
        return None
    return parse_date(value)


class BusinessRuleEngine:
    """
    Derives classification and translation fields for a staged job.

    Args:
        staging: Staging store holding the job's rows
        catalog: Catalog read for decisioning
        translations: Translation lookup and missing-translation sink
    """

    def __init__(self, staging: StagingStore, catalog: CatalogStore, translations: TranslationStore):
        self.staging = staging
        self.catalog = catalog
        self.translations = translations

    def apply(self, job_id: str, reference_date: date | None = None) -> RuleOutcome:
        """
        Run the business rules over a staged job.

        Args:
            job_id: Staged job
            reference_date: Filing date for rows without a filing_date value
                (defaults to today, UTC)

        Returns:
            RuleOutcome summarizing the run

        Raises:
            StagedSetMissing: If the job has no staged rows
            PermanentInputError: If a row holds an unreadable date or flag
            StorageUnavailable: If the catalog cannot be read
        """
        record_set = self.staging.load(job_id)
        reference_date = reference_date or utcnow().date()

        snapshot = self.catalog.snapshot(
            record_set.client_id,
            document_numbers=[v for v in self._column(record_set, DOCUMENT_NUMBER) if v],
            fund_codes=[v for v in self._column(record_set, FUND_CODE) if v],
        )

        now = utcnow()
        changes: list[FieldChange] = []
        classifications: Counter[str] = Counter()
        missing: list[MissingTranslation] = []
        versions: dict[str, int] = {}

        for idx in range(len(record_set)):
            values = record_set.values(idx)
            try:
                computed = self._compute_row(record_set, values, snapshot, reference_date, missing)
            except ValueError as e:
                raise PermanentInputError(
                    f"Row {idx + 1}: {e}", job_id=job_id, file_name=record_set.file_name, stage="RuleProcessing"
                ) from e
            classifications[computed[AGE_STATUS]] += 1

            document_number = values.get(DOCUMENT_NUMBER)
            if document_number:
                versions[catalog_key(record_set.client_id, str(document_number))] = snapshot.version_of(str(document_number))

            for name, value in computed.items():
                if record_set.set_field(idx, name, value, now):
                    changes.append((idx, name, record_set.rows[idx][name]))

        if changes or versions != record_set.catalog_versions:
            self.staging.write_fields(job_id, changes, versions)
        if changes:
            metrics.increment_counter(metrics.staged_field_writes_total, len(changes), writer="rules")

        missing_count = 0
        if missing:
            unique = dedupe_missing(missing)
            missing_count = self.translations.record_missing(unique)
            metrics.increment_counter(metrics.missing_translations_total, len(unique), client_id=record_set.client_id)

        outcome = RuleOutcome(
            job_id=job_id,
            rows=len(record_set),
            fields_written=len(changes),
            classifications=dict(classifications),
            missing_translations=missing_count,
            catalog_versions=versions,
        )
        logger.info(
            "Business rules applied",
            extra={
                "job_id": job_id,
                "client_id": record_set.client_id,
                "rows": outcome.rows,
                "fields_written": outcome.fields_written,
                "classifications": outcome.classifications,
                "missing_translations": missing_count,
            },
        )
        return outcome

    @staticmethod
    def _column(record_set: StagedRecordSet, name: str) -> list[str | None]:
        values = []
        for row in record_set.rows:
            staged = row.get(name)
            values.append(str(staged.value) if staged is not None and staged.value is not None else None)
        return values

    def _compute_row(
        self,
        record_set: StagedRecordSet,
        values: dict[str, Any],
        snapshot: CatalogSnapshot,
        reference_date: date,
        missing: list[MissingTranslation],
    ) -> dict[str, Any]:
        document_number = str(values.get(DOCUMENT_NUMBER) or "")
        fund_code = str(values.get(FUND_CODE) or "")
        prior = snapshot.entries.get(document_number)
        filing_date = _optional_date(values.get(FILING_DATE)) or reference_date

        status = classify_document_age(AgeClassificationInput(
            inception_date=_optional_date(values.get(INCEPTION_DATE)),
            filing_date=filing_date,
            fund_known=fund_code in snapshot.known_funds,
            document_known=prior is not None,
            prior_status=prior.age_status if prior else None,
        ))

        raw_active = values.get(ACTIVE)
        computed: dict[str, Any] = {
            AGE_STATUS: status.value,
            ACTIVE: True if raw_active is None else parse_bool(raw_active),
            LAST_FILING_DATE: filing_date.isoformat(),
        }

        for field in record_set.translated_fields:
            source_text = values.get(field)
            translated = None
            if source_text is not None:
                translated = self.translations.lookup(
                    record_set.client_id, field, str(source_text), record_set.target_language
                )
                if translated is None:
                    missing.append(MissingTranslation(
                        client_id=record_set.client_id,
                        field_name=field,
                        source_text=str(source_text),
                        language=record_set.target_language,
                        job_id=record_set.job_id,
                    ))
            computed[record_set.translated_field(field)] = translated

        return computed
