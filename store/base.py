"""Persistence interface consumed by the import pipeline.

Two backends implement it: ``store.supabase_io.SupabaseCrmStore``
(PostgREST, production) and ``store.duckdb_io.DuckDbCrmStore`` (local
file, CLI and tests). All methods are blocking; the pipeline calls them
through ``asyncio.to_thread``.
"""

from typing import Any, Optional, Protocol

from engine.models import ExistingContact, ImportJob, Tag, ValidationSession


class CrmStore(Protocol):
    def list_tags(self, company_id: str) -> list[Tag]: ...

    def create_tags(self, company_id: str, names: list[str]) -> list[Tag]: ...

    def list_contacts(self, company_id: str) -> list[ExistingContact]:
        """All contacts of a company that are not soft-deleted."""
        ...

    def create_contacts(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]: ...

    def update_contact(self, contact_id: str, fields: dict[str, Any]) -> None: ...

    def get_system_tags(self, slugs: list[str]) -> dict[str, str]:
        """slug -> system tag id, for the slugs that exist."""
        ...

    def find_validation_session(self, company_id: str) -> Optional[ValidationSession]: ...

    def create_import_job(self, company_id: str, name: str, total: int) -> ImportJob: ...

    def update_import_job(self, job_id: str, fields: dict[str, Any]) -> None: ...

    def get_import_job(self, job_id: str) -> Optional[ImportJob]: ...
