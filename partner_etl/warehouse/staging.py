"""
Job-scoped staging of validated rows.

Rows are stored field by field with a per-field updated_at stamp and read
back in pivot form (one {field: StagedField} map per row). A job id owns its
staged set until the import executor finalizes it.
"""

import copy
import threading
import uuid
from datetime import datetime
from typing import Any, Protocol

from psycopg.types.json import Jsonb

from partner_etl.core.errors import PermanentInputError, StagedSetMissing, StagingConflict
from partner_etl.core.models.file_envelope import FileEnvelope
from partner_etl.core.models.staged_record import StagedField, StagedRecordSet
from partner_etl.core.models.template import Template
from partner_etl.core.models.validation_result import ValidationResult
from partner_etl.observability import metrics
from partner_etl.observability.logger import get_logger
from partner_etl.utils.validation import validate_identifier

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)

FieldChange = tuple[int, str, StagedField]


class StagingStore(Protocol):
    """Persistence for staged record sets."""

    def create(self, record_set: StagedRecordSet) -> None:
        """Persist a new set; raises StagingConflict if the job id has rows."""

    def load(self, job_id: str) -> StagedRecordSet:
        """Pivot read; raises StagedSetMissing for an unknown job id."""

    def exists(self, job_id: str) -> bool: ...

    def write_fields(
        self, job_id: str, changes: list[FieldChange], catalog_versions: dict[str, int]
    ) -> None:
        """Persist changed fields and the catalog versions the rules observed."""

    def finalize(self, job_id: str) -> None:
        """Drop a job's staged rows after import."""

    def job_ids(self) -> list[str]: ...


class InMemoryStagingStore:
    """Thread-safe in-process staging store."""

    def __init__(self) -> None:
        self._sets: dict[str, StagedRecordSet] = {}
        self._lock = threading.Lock()
        self.field_writes = 0

    def create(self, record_set: StagedRecordSet) -> None:
        with self._lock:
            if record_set.job_id in self._sets:
                raise StagingConflict(
                    f"Job '{record_set.job_id}' already has staged rows",
                    job_id=record_set.job_id,
                    stage="Staging",
                )
            self._sets[record_set.job_id] = record_set.model_copy(deep=True)
            self.field_writes += sum(len(row) for row in record_set.rows)

    def load(self, job_id: str) -> StagedRecordSet:
        with self._lock:
            record_set = self._sets.get(job_id)
            if record_set is None:
                raise StagedSetMissing(f"No staged rows for job '{job_id}'", job_id=job_id)
            return record_set.model_copy(deep=True)

    def exists(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._sets

    def write_fields(self, job_id: str, changes: list[FieldChange], catalog_versions: dict[str, int]) -> None:
        with self._lock:
            record_set = self._sets.get(job_id)
            if record_set is None:
                raise StagedSetMissing(f"No staged rows for job '{job_id}'", job_id=job_id)
            for row_index, name, staged in changes:
                record_set.rows[row_index][name] = copy.deepcopy(staged)
            record_set.catalog_versions = dict(catalog_versions)
            self.field_writes += len(changes)

    def finalize(self, job_id: str) -> None:
        with self._lock:
            self._sets.pop(job_id, None)

    def job_ids(self) -> list[str]:
        with self._lock:
            return list(self._sets)


class PostgresStagingStore:
    """Staging tables in PostgreSQL (staged_job + staged_field)."""

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def create(self, record_set: StagedRecordSet) -> None:
        with self.pool.transaction() as cur:
            cur.execute(
                """
                INSERT INTO staged_job (
                    job_id, client_id, template_name, file_name, batch_id,
                    translated_fields, target_language, row_count, catalog_versions, created_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (job_id) DO NOTHING
                """,
                (
                    record_set.job_id,
                    record_set.client_id,
                    record_set.template_name,
                    record_set.file_name,
                    record_set.batch_id,
                    Jsonb(record_set.translated_fields),
                    record_set.target_language,
                    len(record_set.rows),
                    Jsonb(record_set.catalog_versions),
                    record_set.created_at,
                ),
            )
            if cur.rowcount == 0:
                raise StagingConflict(
                    f"Job '{record_set.job_id}' already has staged rows",
                    job_id=record_set.job_id,
                    stage="Staging",
                )
            cur.executemany(
                """
                INSERT INTO staged_field (job_id, row_index, field_name, value, updated_at)
                VALUES (%s, %s, %s, %s, %s)
                """,
                [
                    (record_set.job_id, idx, name, Jsonb(staged.value), staged.updated_at)
                    for idx, row in enumerate(record_set.rows)
                    for name, staged in row.items()
                ],
            )

    def load(self, job_id: str) -> StagedRecordSet:
        jobs = self.pool.execute_query("SELECT * FROM staged_job WHERE job_id = %s", (job_id,))
        if not jobs:
            raise StagedSetMissing(f"No staged rows for job '{job_id}'", job_id=job_id)
        job = jobs[0]

        fields = self.pool.execute_query(
            """
            SELECT row_index, field_name, value, updated_at
            FROM staged_field
            WHERE job_id = %s
            ORDER BY row_index, field_name
            """,
            (job_id,),
        )
        rows: list[dict[str, StagedField]] = [{} for _ in range(job["row_count"])]
        for f in fields:
            rows[f["row_index"]][f["field_name"]] = StagedField(value=f["value"], updated_at=f["updated_at"])

        return StagedRecordSet(
            job_id=job["job_id"],
            client_id=job["client_id"],
            template_name=job["template_name"],
            file_name=job["file_name"],
            batch_id=job["batch_id"],
            translated_fields=job["translated_fields"],
            target_language=job["target_language"],
            rows=rows,
            catalog_versions=job["catalog_versions"],
            created_at=job["created_at"],
        )

    def exists(self, job_id: str) -> bool:
        rows = self.pool.execute_query("SELECT 1 FROM staged_job WHERE job_id = %s", (job_id,))
        return bool(rows)

    def write_fields(self, job_id: str, changes: list[FieldChange], catalog_versions: dict[str, int]) -> None:
        with self.pool.transaction() as cur:
            cur.execute(
                "UPDATE staged_job SET catalog_versions = %s WHERE job_id = %s",
                (Jsonb(catalog_versions), job_id),
            )
            if cur.rowcount == 0:
                raise StagedSetMissing(f"No staged rows for job '{job_id}'", job_id=job_id)
            if changes:
                cur.executemany(
                    """
                    INSERT INTO staged_field (job_id, row_index, field_name, value, updated_at)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (job_id, row_index, field_name) DO UPDATE SET
                        value = EXCLUDED.value,
                        updated_at = EXCLUDED.updated_at
                    """,
                    [(job_id, idx, name, Jsonb(staged.value), staged.updated_at) for idx, name, staged in changes],
                )

    def finalize(self, job_id: str) -> None:
        self.pool.execute_command("DELETE FROM staged_job WHERE job_id = %s", (job_id,))

    def job_ids(self) -> list[str]:
        rows = self.pool.execute_query("SELECT job_id FROM staged_job ORDER BY created_at")
        return [r["job_id"] for r in rows]


class StagingWriter:
    """
    Converts validated rows into a staged record set under a job id.

    Args:
        store: Staging persistence
    """

    def __init__(self, store: StagingStore):
        self.store = store

    def write(
        self,
        result: ValidationResult,
        envelope: FileEnvelope,
        rows: list[dict[str, Any]],
        template: Template,
        now: datetime | None = None,
    ) -> str:
        """
        Stage rows of a validated file.

        Returns:
            The job id the rows are staged under (the envelope's, or a new one)

        Raises:
            PermanentInputError: If the validation result did not pass
            StagingConflict: If the job id already has staged rows
        """
        if not result.passed:
            raise PermanentInputError(
                "Cannot stage a file that failed validation",
                file_name=envelope.file_name,
                stage="Staging",
            )

        job_id = validate_identifier(envelope.job_id, "job_id") if envelope.job_id else uuid.uuid4().hex
        record_set = StagedRecordSet.from_values(
            job_id,
            rows,
            now=now,
            client_id=template.client_id,
            template_name=template.name,
            file_name=envelope.file_name,
            batch_id=envelope.batch_id,
            translated_fields=list(template.translated_fields),
            target_language=template.target_language,
        )
        self.store.create(record_set)

        field_count = sum(len(row) for row in record_set.rows)
        metrics.increment_counter(metrics.staged_field_writes_total, field_count, writer="staging")
        logger.info(
            "Rows staged",
            extra={
                "file_name": envelope.file_name,
                "batch_id": envelope.batch_id,
                "job_id": job_id,
                "rows": len(record_set.rows),
                "fields": field_count,
            },
        )
        return job_id

    def read_pivot(self, job_id: str) -> StagedRecordSet:
        """Staged rows of a job, one {field: StagedField} map per row."""
        return self.store.load(job_id)
