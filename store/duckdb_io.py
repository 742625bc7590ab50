"""DuckDB-backed CRM store for local imports.

Used by the CLI and by the server when no Supabase project is configured.
List-valued contact fields (phones, tags, emails, ...) live in a JSON
document column; only the columns the pipeline filters on are real columns.
"""

import json
import logging
import threading
import uuid
from pathlib import Path
from typing import Any, Optional, Union

import duckdb

from engine.models import ExistingContact, ImportJob, ImportStatus, Tag, ValidationSession

logger = logging.getLogger("crmimport.duckdb")

DEFAULT_CRM_DB = Path(__file__).parent.parent / "crm.duckdb"

_CREATE_TABLES_SQL = [
    """
    CREATE TABLE IF NOT EXISTS tags (
        id TEXT PRIMARY KEY,
        company_id TEXT NOT NULL,
        name TEXT NOT NULL,
        type TEXT,
        is_smart BOOLEAN
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS system_tags (
        id TEXT PRIMARY KEY,
        slug TEXT UNIQUE NOT NULL,
        name TEXT
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        company_id TEXT NOT NULL,
        session_name TEXT NOT NULL,
        status TEXT,
        is_default BOOLEAN,
        is_deleted BOOLEAN
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS contacts (
        id TEXT PRIMARY KEY,
        company_id TEXT NOT NULL,
        deleted BOOLEAN,
        data TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS imports (
        id TEXT PRIMARY KEY,
        company_id TEXT NOT NULL,
        name TEXT,
        total_records INTEGER,
        processed_records INTEGER,
        successful_records INTEGER,
        failed_records INTEGER,
        status TEXT,
        completed_date TEXT
    );
    """,
]

_CREATE_INDEXES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_contacts_company ON contacts(company_id);",
    "CREATE INDEX IF NOT EXISTS idx_tags_company ON tags(company_id);",
]

_IMPORT_COLUMNS = (
    "id",
    "company_id",
    "name",
    "total_records",
    "processed_records",
    "successful_records",
    "failed_records",
    "status",
    "completed_date",
)

_UPDATABLE_IMPORT_COLUMNS = frozenset(_IMPORT_COLUMNS) - {"id", "company_id"}


def _new_id() -> str:
    return str(uuid.uuid4())


class DuckDbCrmStore:
    """CrmStore over a single DuckDB connection.

    The pipeline calls the store from worker threads, so every statement
    runs under one lock.
    """

    def __init__(self, db_path: Union[str, Path, None] = None):
        if db_path is None:
            db_path = DEFAULT_CRM_DB
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        self._conn = duckdb.connect(self.db_path)
        for sql in _CREATE_TABLES_SQL:
            self._conn.execute(sql)
        for sql in _CREATE_INDEXES_SQL:
            self._conn.execute(sql)
        logger.info("Initialized CRM DB at %s", self.db_path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _fetchall(self, sql: str, params: Optional[list] = None) -> list[tuple]:
        with self._lock:
            return self._conn.execute(sql, params or []).fetchall()

    def _executemany(self, sql: str, rows: list[list]) -> None:
        with self._lock:
            self._conn.execute("BEGIN TRANSACTION")
            try:
                self._conn.executemany(sql, rows)
                self._conn.execute("COMMIT")
            except Exception:
                self._conn.execute("ROLLBACK")
                raise

    # --- tags ---

    def list_tags(self, company_id: str) -> list[Tag]:
        rows = self._fetchall(
            "SELECT id, company_id, name, type, is_smart FROM tags WHERE company_id = ? ORDER BY name",
            [company_id],
        )
        return [
            Tag(id=r[0], company_id=r[1], name=r[2], type=r[3] or "manual", is_smart=bool(r[4]))
            for r in rows
        ]

    def create_tags(self, company_id: str, names: list[str]) -> list[Tag]:
        tags = [Tag(id=_new_id(), company_id=company_id, name=name) for name in names]
        if tags:
            self._executemany(
                "INSERT INTO tags (id, company_id, name, type, is_smart) VALUES (?, ?, ?, ?, ?)",
                [[t.id, t.company_id, t.name, t.type, t.is_smart] for t in tags],
            )
        return tags

    def add_system_tag(self, slug: str, name: Optional[str] = None) -> str:
        existing = self._fetchall("SELECT id FROM system_tags WHERE slug = ?", [slug])
        if existing:
            return existing[0][0]
        tag_id = _new_id()
        self._fetchall(
            "INSERT INTO system_tags (id, slug, name) VALUES (?, ?, ?)",
            [tag_id, slug, name or slug],
        )
        return tag_id

    def get_system_tags(self, slugs: list[str]) -> dict[str, str]:
        if not slugs:
            return {}
        placeholders = ", ".join("?" for _ in slugs)
        rows = self._fetchall(
            f"SELECT slug, id FROM system_tags WHERE slug IN ({placeholders})",
            list(slugs),
        )
        return {slug: tag_id for slug, tag_id in rows}

    # --- sessions ---

    def add_session(self, company_id: str, session_name: str, *, is_default: bool = True) -> ValidationSession:
        session = ValidationSession(
            id=_new_id(),
            company_id=company_id,
            session_name=session_name,
            status="WORKING",
            is_default=is_default,
        )
        self._fetchall(
            "INSERT INTO sessions (id, company_id, session_name, status, is_default, is_deleted) "
            "VALUES (?, ?, ?, ?, ?, FALSE)",
            [session.id, company_id, session_name, session.status, is_default],
        )
        return session

    def find_validation_session(self, company_id: str) -> Optional[ValidationSession]:
        """Default WORKING session first, otherwise any WORKING session."""
        rows = self._fetchall(
            """
            SELECT id, company_id, session_name, status, is_default
            FROM sessions
            WHERE company_id = ? AND status = 'WORKING' AND coalesce(is_deleted, FALSE) = FALSE
            ORDER BY coalesce(is_default, FALSE) DESC
            LIMIT 1
            """,
            [company_id],
        )
        if not rows:
            return None
        r = rows[0]
        return ValidationSession(id=r[0], company_id=r[1], session_name=r[2], status=r[3], is_default=bool(r[4]))

    # --- contacts ---

    def list_contacts(self, company_id: str) -> list[ExistingContact]:
        rows = self._fetchall(
            "SELECT id, data FROM contacts WHERE company_id = ? AND coalesce(deleted, FALSE) = FALSE",
            [company_id],
        )
        return [ExistingContact.model_validate({**json.loads(data), "id": contact_id}) for contact_id, data in rows]

    def get_contact(self, contact_id: str) -> Optional[dict[str, Any]]:
        rows = self._fetchall("SELECT data FROM contacts WHERE id = ?", [contact_id])
        if not rows:
            return None
        return {**json.loads(rows[0][0]), "id": contact_id}

    def create_contacts(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        created = []
        for record in records:
            record = dict(record)
            record["id"] = record.get("id") or _new_id()
            created.append(record)
        if created:
            self._executemany(
                "INSERT INTO contacts (id, company_id, deleted, data) VALUES (?, ?, ?, ?)",
                [
                    [r["id"], r.get("company_id"), bool(r.get("deleted", False)), json.dumps(r)]
                    for r in created
                ],
            )
        return created

    def update_contact(self, contact_id: str, fields: dict[str, Any]) -> None:
        with self._lock:
            rows = self._conn.execute("SELECT data FROM contacts WHERE id = ?", [contact_id]).fetchall()
            if not rows:
                raise KeyError(f"contact {contact_id} not found")
            data = json.loads(rows[0][0])
            data.update(fields)
            self._conn.execute(
                "UPDATE contacts SET data = ?, deleted = ? WHERE id = ?",
                [json.dumps(data), bool(data.get("deleted", False)), contact_id],
            )

    # --- import jobs ---

    def create_import_job(self, company_id: str, name: str, total: int) -> ImportJob:
        job = ImportJob(
            id=_new_id(),
            company_id=company_id,
            name=name,
            total_records=total,
            status=ImportStatus.processing,
        )
        self._fetchall(
            "INSERT INTO imports (id, company_id, name, total_records, processed_records, "
            "successful_records, failed_records, status, completed_date) "
            "VALUES (?, ?, ?, ?, 0, 0, 0, ?, NULL)",
            [job.id, company_id, name, total, job.status.value],
        )
        return job

    def update_import_job(self, job_id: str, fields: dict[str, Any]) -> None:
        unknown = set(fields) - _UPDATABLE_IMPORT_COLUMNS
        if unknown:
            raise ValueError(f"Unknown import job fields: {sorted(unknown)}")
        if not fields:
            return
        columns = sorted(fields)
        assignments = ", ".join(f"{col} = ?" for col in columns)
        self._fetchall(
            f"UPDATE imports SET {assignments} WHERE id = ?",
            [fields[col] for col in columns] + [job_id],
        )

    def get_import_job(self, job_id: str) -> Optional[ImportJob]:
        rows = self._fetchall(
            f"SELECT {', '.join(_IMPORT_COLUMNS)} FROM imports WHERE id = ?",
            [job_id],
        )
        if not rows:
            return None
        return ImportJob.model_validate(dict(zip(_IMPORT_COLUMNS, rows[0])))
