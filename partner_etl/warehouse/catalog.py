"""
Document catalog stores.

The catalog is the only resource concurrent jobs both write. Every row has a
version; a job commits only if each row it touches is still at the version
its rule processing observed. Locking is per document key, never global.
"""

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

from partner_etl.core.errors import CatalogWriteConflict
from partner_etl.core.models.catalog_entry import DocumentCatalogEntry
from partner_etl.core.models.common import utcnow
from partner_etl.utils.locks import KeyedLocks

from .connection import DatabaseConnectionPool

CatalogKey = tuple[str, str]


@dataclass
class CatalogSnapshot:
    """Catalog state the business rules decide on, read before any decision."""

    client_id: str
    entries: dict[str, DocumentCatalogEntry] = field(default_factory=dict)
    known_funds: set[str] = field(default_factory=set)

    def version_of(self, document_number: str) -> int:
        entry = self.entries.get(document_number)
        return entry.version if entry else 0


class CatalogStore(Protocol):
    def snapshot(
        self, client_id: str, document_numbers: Iterable[str], fund_codes: Iterable[str]
    ) -> CatalogSnapshot: ...

    def get(self, client_id: str, document_number: str) -> DocumentCatalogEntry | None: ...

    def commit(
        self,
        entries: list[DocumentCatalogEntry],
        expected_versions: dict[CatalogKey, int],
        job_id: str,
    ) -> list[DocumentCatalogEntry]:
        """
        Write all entries or none.

        Raises:
            CatalogWriteConflict: If any key is no longer at its expected version
        """

    def list_client(self, client_id: str) -> list[DocumentCatalogEntry]: ...


def _conflict(keys: list[CatalogKey], job_id: str) -> CatalogWriteConflict:
    listed = ", ".join(f"{c}/{d}" for c, d in keys)
    return CatalogWriteConflict(
        f"Catalog rows changed since rule processing: {listed}",
        keys=keys,
        job_id=job_id,
        stage="Importing",
    )


class InMemoryCatalogStore:
    """In-process catalog with per-key locks."""

    def __init__(self) -> None:
        self._entries: dict[CatalogKey, DocumentCatalogEntry] = {}
        self._guard = threading.Lock()
        self._locks = KeyedLocks()

    def put(self, entry: DocumentCatalogEntry) -> None:
        """Seed an entry as-is (fixtures, migrations)."""
        with self._guard:
            self._entries[entry.key] = entry.model_copy()

    def snapshot(self, client_id: str, document_numbers: Iterable[str], fund_codes: Iterable[str]) -> CatalogSnapshot:
        wanted_docs = set(document_numbers)
        wanted_funds = set(fund_codes)
        snap = CatalogSnapshot(client_id=client_id)
        with self._guard:
            for (client, doc), entry in self._entries.items():
                if client != client_id:
                    continue
                if doc in wanted_docs:
                    snap.entries[doc] = entry.model_copy()
                if entry.fund_code in wanted_funds:
                    snap.known_funds.add(entry.fund_code)
        return snap

    def get(self, client_id: str, document_number: str) -> DocumentCatalogEntry | None:
        with self._guard:
            entry = self._entries.get((client_id, document_number))
            return entry.model_copy() if entry else None

    def commit(
        self,
        entries: list[DocumentCatalogEntry],
        expected_versions: dict[CatalogKey, int],
        job_id: str,
    ) -> list[DocumentCatalogEntry]:
        keys = [e.key for e in entries]
        with self._locks.hold_many(keys):
            with self._guard:
                stale = [
                    key for key in keys
                    if (self._entries[key].version if key in self._entries else 0) != expected_versions.get(key, 0)
                ]
            if stale:
                raise _conflict(stale, job_id)

            now = utcnow()
            written = [
                entry.model_copy(update={
                    "version": expected_versions.get(entry.key, 0) + 1,
                    "last_job_id": job_id,
                    "updated_at": now,
                })
                for entry in entries
            ]
            with self._guard:
                for entry in written:
                    self._entries[entry.key] = entry
            return written

    def list_client(self, client_id: str) -> list[DocumentCatalogEntry]:
        with self._guard:
            return sorted(
                (e.model_copy() for (c, _), e in self._entries.items() if c == client_id),
                key=lambda e: e.document_number,
            )

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


class PostgresCatalogStore:
    """document_catalog table with version-guarded writes."""

    COLUMNS = (
        "client_id, document_number, fund_code, inception_date, age_status, active, "
        "last_filing_date, fund_name, translated_name, version, last_job_id, updated_at"
    )

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def snapshot(self, client_id: str, document_numbers: Iterable[str], fund_codes: Iterable[str]) -> CatalogSnapshot:
        docs = sorted(set(document_numbers))
        funds = sorted(set(fund_codes))
        snap = CatalogSnapshot(client_id=client_id)

        rows = self.pool.execute_query(
            f"SELECT {self.COLUMNS} FROM document_catalog WHERE client_id = %s AND document_number = ANY(%s)",
            (client_id, docs),
        )
        for row in rows:
            snap.entries[row["document_number"]] = DocumentCatalogEntry(**row)

        fund_rows = self.pool.execute_query(
            "SELECT DISTINCT fund_code FROM document_catalog WHERE client_id = %s AND fund_code = ANY(%s)",
            (client_id, funds),
        )
        snap.known_funds = {r["fund_code"] for r in fund_rows}
        return snap

    def get(self, client_id: str, document_number: str) -> DocumentCatalogEntry | None:
        rows = self.pool.execute_query(
            f"SELECT {self.COLUMNS} FROM document_catalog WHERE client_id = %s AND document_number = %s",
            (client_id, document_number),
        )
        return DocumentCatalogEntry(**rows[0]) if rows else None

    def commit(
        self,
        entries: list[DocumentCatalogEntry],
        expected_versions: dict[CatalogKey, int],
        job_id: str,
    ) -> list[DocumentCatalogEntry]:
        now = utcnow()
        written = []
        stale: list[CatalogKey] = []

        with self.pool.transaction() as cur:
            for entry in entries:
                expected = expected_versions.get(entry.key, 0)
                values = (
                    entry.fund_code,
                    entry.inception_date,
                    entry.age_status.value,
                    entry.active,
                    entry.last_filing_date,
                    entry.fund_name,
                    entry.translated_name,
                    job_id,
                    now,
                )
                if expected == 0:
                    cur.execute(
                        """
                        INSERT INTO document_catalog (
                            fund_code, inception_date, age_status, active, last_filing_date,
                            fund_name, translated_name, last_job_id, updated_at,
                            client_id, document_number, version
                        )
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, 1)
                        ON CONFLICT (client_id, document_number) DO NOTHING
                        """,
                        (*values, entry.client_id, entry.document_number),
                    )
                else:
                    cur.execute(
                        """
                        UPDATE document_catalog SET
                            fund_code = %s, inception_date = %s, age_status = %s, active = %s,
                            last_filing_date = %s, fund_name = %s, translated_name = %s,
                            last_job_id = %s, updated_at = %s, version = version + 1
                        WHERE client_id = %s AND document_number = %s AND version = %s
                        """,
                        (*values, entry.client_id, entry.document_number, expected),
                    )
                if cur.rowcount != 1:
                    stale.append(entry.key)
                else:
                    written.append(entry.model_copy(update={
                        "version": expected + 1, "last_job_id": job_id, "updated_at": now,
                    }))

            # Raising inside the transaction rolls back every row of the job
            if stale:
                raise _conflict(stale, job_id)

        return written

    def list_client(self, client_id: str) -> list[DocumentCatalogEntry]:
        rows = self.pool.execute_query(
            f"SELECT {self.COLUMNS} FROM document_catalog WHERE client_id = %s ORDER BY document_number",
            (client_id,),
        )
        return [DocumentCatalogEntry(**row) for row in rows]
