"""
Translation lookup and missing-translation records.
"""

import threading
from typing import Protocol

from partner_etl.core.models.missing_translation import MissingTranslation, dedupe_missing

from .connection import DatabaseConnectionPool


class TranslationStore(Protocol):
    def lookup(self, client_id: str, field_name: str, source_text: str, language: str) -> str | None: ...

    def record_missing(self, records: list[MissingTranslation]) -> int:
        """Bulk insert-if-absent; returns how many were new."""

    def list_missing(self, client_id: str | None = None) -> list[MissingTranslation]: ...


class InMemoryTranslationStore:
    def __init__(self, translations: dict[tuple[str, str, str, str], str] | None = None) -> None:
        # (client_id, field_name, source_text, language) -> translated text
        self._translations = dict(translations or {})
        self._missing: dict[tuple[str, str, str, str], MissingTranslation] = {}
        self._lock = threading.Lock()

    def add_translation(self, client_id: str, field_name: str, source_text: str, language: str, translated: str) -> None:
        with self._lock:
            self._translations[(client_id, field_name, source_text, language)] = translated

    def lookup(self, client_id: str, field_name: str, source_text: str, language: str) -> str | None:
        with self._lock:
            return self._translations.get((client_id, field_name, source_text, language))

    def record_missing(self, records: list[MissingTranslation]) -> int:
        inserted = 0
        with self._lock:
            for record in dedupe_missing(records):
                key = (record.client_id, record.field_name, record.source_text, record.language)
                if key not in self._missing:
                    self._missing[key] = record
                    inserted += 1
        return inserted

    def list_missing(self, client_id: str | None = None) -> list[MissingTranslation]:
        with self._lock:
            return [m for m in self._missing.values() if client_id is None or m.client_id == client_id]


class PostgresTranslationStore:
    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def add_translation(self, client_id: str, field_name: str, source_text: str, language: str, translated: str) -> None:
        self.pool.execute_command(
            """
            INSERT INTO translation (client_id, field_name, source_text, language, translated)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (client_id, field_name, source_text, language) DO UPDATE SET
                translated = EXCLUDED.translated
            """,
            (client_id, field_name, source_text, language, translated),
        )

    def lookup(self, client_id: str, field_name: str, source_text: str, language: str) -> str | None:
        rows = self.pool.execute_query(
            """
            SELECT translated FROM translation
            WHERE client_id = %s AND field_name = %s AND source_text = %s AND language = %s
            """,
            (client_id, field_name, source_text, language),
        )
        return rows[0]["translated"] if rows else None

    def record_missing(self, records: list[MissingTranslation]) -> int:
        unique = dedupe_missing(records)
        if not unique:
            return 0
        inserted = 0
        with self.pool.transaction() as cur:
            for record in unique:
                cur.execute(
                    """
                    INSERT INTO missing_translation
                        (client_id, field_name, source_text, language, job_id, discovered_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    ON CONFLICT DO NOTHING
                    """,
                    (record.client_id, record.field_name, record.source_text,
                     record.language, record.job_id, record.discovered_at),
                )
                inserted += cur.rowcount
        return inserted

    def list_missing(self, client_id: str | None = None) -> list[MissingTranslation]:
        if client_id is None:
            rows = self.pool.execute_query("SELECT * FROM missing_translation ORDER BY discovered_at")
        else:
            rows = self.pool.execute_query(
                "SELECT * FROM missing_translation WHERE client_id = %s ORDER BY discovered_at", (client_id,)
            )
        return [MissingTranslation(**row) for row in rows]
