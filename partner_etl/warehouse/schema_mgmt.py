"""
DDL for the pipeline's PostgreSQL tables.

- staged_field: job-scoped staging rows, one row per (job, row index, field)
- staged_job: staged set metadata and the catalog versions the rules observed
- document_catalog: permanent per-client document records
- translation: known translations
- missing_translation: values with no translation, insert-if-absent
"""

from .connection import DatabaseConnectionPool

TABLES = ("staged_field", "staged_job", "document_catalog", "translation", "missing_translation")

SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS staged_job (
    job_id            TEXT PRIMARY KEY,
    client_id         TEXT NOT NULL,
    template_name     TEXT NOT NULL,
    file_name         TEXT NOT NULL,
    batch_id          TEXT,
    translated_fields JSONB NOT NULL DEFAULT '[]'::jsonb,
    target_language   TEXT NOT NULL DEFAULT 'fr',
    row_count         INTEGER NOT NULL,
    catalog_versions  JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at        TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS staged_field (
    job_id      TEXT NOT NULL REFERENCES staged_job (job_id) ON DELETE CASCADE,
    row_index   INTEGER NOT NULL,
    field_name  TEXT NOT NULL,
    value       JSONB,
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (job_id, row_index, field_name)
);

CREATE TABLE IF NOT EXISTS document_catalog (
    client_id         TEXT NOT NULL,
    document_number   TEXT NOT NULL,
    fund_code         TEXT NOT NULL,
    inception_date    DATE,
    age_status        TEXT NOT NULL CHECK (age_status IN
                        ('TwelveConsecutiveMonths', 'BrandNewFund', 'NewFund', 'NewSeries')),
    active            BOOLEAN NOT NULL DEFAULT TRUE,
    last_filing_date  DATE,
    fund_name         TEXT,
    translated_name   TEXT,
    version           INTEGER NOT NULL DEFAULT 1,
    last_job_id       TEXT,
    updated_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (client_id, document_number)
);

CREATE INDEX IF NOT EXISTS idx_document_catalog_fund
    ON document_catalog (client_id, fund_code);

CREATE TABLE IF NOT EXISTS translation (
    client_id    TEXT NOT NULL,
    field_name   TEXT NOT NULL,
    source_text  TEXT NOT NULL,
    language     TEXT NOT NULL,
    translated   TEXT NOT NULL,
    PRIMARY KEY (client_id, field_name, source_text, language)
);

CREATE TABLE IF NOT EXISTS missing_translation (
    client_id      TEXT NOT NULL,
    field_name     TEXT NOT NULL,
    source_text    TEXT NOT NULL,
    language       TEXT NOT NULL,
    job_id         TEXT,
    discovered_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (client_id, field_name, source_text, language)
);
"""


class SchemaManager:
    """Creates and drops the pipeline tables."""

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def create_all(self) -> None:
        with self.pool.transaction() as cur:
            cur.execute(SCHEMA_DDL)

    def drop_all(self) -> None:
        with self.pool.transaction() as cur:
            for table in TABLES:
                cur.execute(f"DROP TABLE IF EXISTS {table} CASCADE")

    def truncate_all(self) -> None:
        """Empty every table (test isolation)."""
        with self.pool.transaction() as cur:
            cur.execute(f"TRUNCATE {', '.join(TABLES)}")

    def table_exists(self, table_name: str) -> bool:
        rows = self.pool.execute_query(
            "SELECT to_regclass(%s) IS NOT NULL AS present", (f"public.{table_name}",)
        )
        return bool(rows and rows[0]["present"])
