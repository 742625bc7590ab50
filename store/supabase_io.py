from __future__ import annotations

import logging
import os
from typing import Any, Optional

import requests

from engine.errors import StoreError
from engine.models import ExistingContact, ImportJob, ImportStatus, Tag, ValidationSession

logger = logging.getLogger("crmimport.supabase")

# PostgREST caps unbounded selects; contacts are read page by page.
_PAGE_SIZE = 1000

_CONTACT_COLUMNS = "id,company_id,first_name,phone,phones,tags,deleted"


class SupabaseRestError(StoreError):
    """Raised when Supabase PostgREST returns a non-2xx response."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"supabase_rest_error status={status_code} {message}")
        self.status_code = status_code


class SupabaseRestClient:
    """Minimal Supabase PostgREST client.

    Uses a service role key (or other privileged key) to bypass RLS for this backend.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout_seconds: float = 10.0,
        request_fn=None,
    ):
        self._rest_url = base_url.rstrip("/") + "/rest/v1"
        self._timeout_seconds = timeout_seconds
        self._request_fn = request_fn or requests.request
        self._base_headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _request(
        self,
        method: str,
        path: str,
        *,
        headers: Optional[dict[str, str]] = None,
        params: Optional[dict[str, str]] = None,
        json_body: Any = None,
    ):
        merged_headers = dict(self._base_headers)
        if headers:
            merged_headers.update(headers)

        url = f"{self._rest_url}{path}"
        resp = self._request_fn(
            method,
            url,
            headers=merged_headers,
            params=params,
            json=json_body,
            timeout=self._timeout_seconds,
        )
        if not (200 <= resp.status_code < 300):
            # Never include headers (apikey) in error messages.
            text = getattr(resp, "text", "")
            raise SupabaseRestError(resp.status_code, text[:500])
        return resp

    @staticmethod
    def _rows(resp) -> list[dict]:
        payload = resp.json()
        if payload is None:
            return []
        if isinstance(payload, list):
            return payload
        return [payload]

    def query_rows(
        self,
        table: str,
        *,
        select: str = "*",
        filters: Optional[dict[str, str]] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[dict]:
        """Query rows from a table via PostgREST."""
        params: dict[str, str] = {"select": select}
        if filters:
            params.update(filters)
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        if offset is not None:
            params["offset"] = str(offset)

        resp = self._request("GET", f"/{table}", params=params)
        return self._rows(resp)

    def query_all(
        self,
        table: str,
        *,
        select: str = "*",
        filters: Optional[dict[str, str]] = None,
        order: str = "id",
        page_size: int = _PAGE_SIZE,
    ) -> list[dict]:
        """Read every matching row, one page at a time."""
        rows: list[dict] = []
        offset = 0
        while True:
            page = self.query_rows(
                table,
                select=select,
                filters=filters,
                order=order,
                limit=page_size,
                offset=offset,
            )
            rows.extend(page)
            if len(page) < page_size:
                return rows
            offset += page_size

    def insert_rows(self, table: str, rows: list[dict]) -> list[dict]:
        """Insert rows in one request and return them as stored."""
        if not rows:
            return []
        resp = self._request(
            "POST",
            f"/{table}",
            headers={"Prefer": "return=representation"},
            json_body=rows,
        )
        return self._rows(resp)

    def update_rows(self, table: str, filters: dict[str, str], fields: dict[str, Any]) -> None:
        self._request(
            "PATCH",
            f"/{table}",
            headers={"Prefer": "return=minimal"},
            params=dict(filters),
            json_body=fields,
        )


class SupabaseCrmStore:
    """CrmStore backed by the CRM's PostgREST tables.

    Tables: ``contacts``, ``tags``, ``system_tags``, ``sessions``, ``imports``.
    """

    def __init__(self, client: SupabaseRestClient, *, page_size: int = _PAGE_SIZE):
        self.client = client
        self.page_size = page_size

    def list_tags(self, company_id: str) -> list[Tag]:
        rows = self.client.query_all(
            "tags",
            filters={"company_id": f"eq.{company_id}"},
            page_size=self.page_size,
        )
        return [Tag.model_validate(row) for row in rows]

    def create_tags(self, company_id: str, names: list[str]) -> list[Tag]:
        rows = self.client.insert_rows(
            "tags",
            [
                {"name": name, "company_id": company_id, "type": "manual", "is_smart": False}
                for name in names
            ],
        )
        return [Tag.model_validate(row) for row in rows]

    def list_contacts(self, company_id: str) -> list[ExistingContact]:
        rows = self.client.query_all(
            "contacts",
            select=_CONTACT_COLUMNS,
            filters={"company_id": f"eq.{company_id}", "deleted": "not.is.true"},
            page_size=self.page_size,
        )
        return [ExistingContact.model_validate(row) for row in rows]

    def create_contacts(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return self.client.insert_rows("contacts", records)

    def update_contact(self, contact_id: str, fields: dict[str, Any]) -> None:
        self.client.update_rows("contacts", {"id": f"eq.{contact_id}"}, fields)

    def get_system_tags(self, slugs: list[str]) -> dict[str, str]:
        if not slugs:
            return {}
        rows = self.client.query_rows(
            "system_tags",
            select="id,slug",
            filters={"slug": f"in.({','.join(slugs)})"},
        )
        return {row["slug"]: str(row["id"]) for row in rows if row.get("slug") and row.get("id")}

    def find_validation_session(self, company_id: str) -> Optional[ValidationSession]:
        """Default WORKING session first, otherwise any WORKING session."""
        base = {
            "company_id": f"eq.{company_id}",
            "status": "eq.WORKING",
            "is_deleted": "not.is.true",
        }
        for filters in ({**base, "is_default": "is.true"}, base):
            rows = self.client.query_rows("sessions", filters=filters, limit=1)
            if rows:
                return ValidationSession.model_validate(rows[0])
        return None

    def create_import_job(self, company_id: str, name: str, total: int) -> ImportJob:
        rows = self.client.insert_rows(
            "imports",
            [
                {
                    "company_id": company_id,
                    "name": name,
                    "total_records": total,
                    "processed_records": 0,
                    "successful_records": 0,
                    "failed_records": 0,
                    "status": ImportStatus.processing.value,
                }
            ],
        )
        if not rows:
            raise StoreError("import job insert returned no row")
        return ImportJob.model_validate(rows[0])

    def update_import_job(self, job_id: str, fields: dict[str, Any]) -> None:
        self.client.update_rows("imports", {"id": f"eq.{job_id}"}, fields)

    def get_import_job(self, job_id: str) -> Optional[ImportJob]:
        rows = self.client.query_rows("imports", filters={"id": f"eq.{job_id}"}, limit=1)
        if not rows:
            return None
        return ImportJob.model_validate(rows[0])


def supabase_client_from_env() -> Optional[SupabaseRestClient]:
    url = os.environ.get("CRM_SUPABASE_URL") or os.environ.get("SUPABASE_URL", "")
    key = os.environ.get("CRM_SUPABASE_SERVICE_ROLE_KEY") or os.environ.get(
        "SUPABASE_SERVICE_ROLE_KEY",
        "",
    )
    timeout_seconds = float(os.environ.get("CRM_SUPABASE_TIMEOUT_SECONDS", "10.0"))
    if not url or not key:
        return None
    return SupabaseRestClient(url, key, timeout_seconds=timeout_seconds)


def supabase_store_from_env() -> Optional[SupabaseCrmStore]:
    client = supabase_client_from_env()
    if client is None:
        return None
    return SupabaseCrmStore(client)
