from __future__ import annotations

import copy
import itertools
from urllib.parse import unquote

import pytest

from engine.models import ExistingContact, ImportJob, ImportStatus, Tag, ValidationSession
from engine.transport import HttpResponse


class FakeCrmStore:
    """In-memory CrmStore that records every write."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.tags: list[Tag] = []
        self.contacts: dict[str, dict] = {}
        self.system_tags: dict[str, str] = {}
        self.sessions: list[ValidationSession] = []
        self.jobs: dict[str, ImportJob] = {}
        self.created_tag_batches: list[list[str]] = []
        self.created_contact_batches: list[list[dict]] = []
        self.contact_updates: list[tuple[str, dict]] = []
        self.job_updates: list[tuple[str, dict]] = []
        self.fail_create_calls: set[int] = set()
        self.fail_update_ids: set[str] = set()
        self.fail_job_updates = False
        self.fail_list_contacts = False
        self._create_calls = 0

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def add_tag(self, company_id: str, name: str) -> Tag:
        tag = Tag(id=self._next_id("tag"), company_id=company_id, name=name)
        self.tags.append(tag)
        return tag

    def add_contact(self, company_id: str, phone: str, tags: list[str] | None = None, **extra) -> str:
        contact_id = self._next_id("contact")
        self.contacts[contact_id] = {
            "id": contact_id,
            "company_id": company_id,
            "first_name": extra.pop("first_name", "Existing"),
            "phone": phone,
            "phones": [{"phone": phone, "type": "primary"}],
            "tags": list(tags or []),
            **extra,
        }
        return contact_id

    # --- CrmStore ---

    def list_tags(self, company_id: str) -> list[Tag]:
        return [t for t in self.tags if t.company_id == company_id]

    def create_tags(self, company_id: str, names: list[str]) -> list[Tag]:
        self.created_tag_batches.append(list(names))
        return [self.add_tag(company_id, name) for name in names]

    def list_contacts(self, company_id: str) -> list[ExistingContact]:
        if self.fail_list_contacts:
            raise RuntimeError("contact store unavailable")
        return [
            ExistingContact.model_validate(copy.deepcopy(c))
            for c in self.contacts.values()
            if c["company_id"] == company_id and not c.get("deleted")
        ]

    def create_contacts(self, records: list[dict]) -> list[dict]:
        self._create_calls += 1
        if self._create_calls in self.fail_create_calls:
            raise RuntimeError("insert rejected")
        created = []
        for record in records:
            record = {**copy.deepcopy(record), "id": self._next_id("contact")}
            self.contacts[record["id"]] = record
            created.append(record)
        self.created_contact_batches.append(created)
        return created

    def update_contact(self, contact_id: str, fields: dict) -> None:
        if contact_id in self.fail_update_ids:
            raise RuntimeError("update rejected")
        self.contact_updates.append((contact_id, copy.deepcopy(fields)))
        self.contacts[contact_id].update(copy.deepcopy(fields))

    def get_system_tags(self, slugs: list[str]) -> dict[str, str]:
        return {slug: tag_id for slug, tag_id in self.system_tags.items() if slug in slugs}

    def find_validation_session(self, company_id: str):
        working = [s for s in self.sessions if s.company_id == company_id and s.status == "WORKING"]
        for session in working:
            if session.is_default:
                return session
        return working[0] if working else None

    def create_import_job(self, company_id: str, name: str, total: int) -> ImportJob:
        job = ImportJob(
            id=self._next_id("import"),
            company_id=company_id,
            name=name,
            total_records=total,
            status=ImportStatus.processing,
        )
        self.jobs[job.id] = job
        return job

    def update_import_job(self, job_id: str, fields: dict) -> None:
        if self.fail_job_updates:
            raise RuntimeError("imports table unavailable")
        self.job_updates.append((job_id, dict(fields)))
        job = self.jobs.get(job_id)
        if job is not None:
            self.jobs[job_id] = ImportJob.model_validate({**job.model_dump(), **fields})

    def get_import_job(self, job_id: str):
        return self.jobs.get(job_id)


class FakeDirectoryTransport:
    """Async ``request_fn`` emulating the messaging API.

    ``registered`` holds the digit strings the directory knows; ``status``
    forces every check-exists call to that HTTP status.
    """

    def __init__(self, registered=(), *, status: int = 200, lids: dict | None = None, profiles: dict | None = None):
        self.registered = set(registered)
        self.status = status
        self.lids = dict(lids or {})
        self.profiles = dict(profiles or {})
        self.calls: list[dict] = []
        self.raise_on: set[str] = set()

    async def __call__(self, method, url, *, headers=None, params=None, json_body=None, timeout_seconds=None):
        params = dict(params or {})
        path = url.split("://", 1)[-1].split("/", 1)[-1]
        path = "/" + unquote(path)
        self.calls.append({"method": method, "path": path, "params": params, "headers": dict(headers or {})})

        for marker in self.raise_on:
            if marker in path:
                raise ConnectionError(f"connection reset on {marker}")

        if path.endswith("/api/contacts/check-exists"):
            if self.status != 200:
                return HttpResponse(self.status, None, "Service Unavailable")
            phone = params["phone"]
            exists = phone in self.registered
            return HttpResponse(200, {"numberExists": exists, "chatId": f"{phone}@c.us" if exists else None})

        if path.endswith("/api/contacts/profile-picture"):
            return HttpResponse(200, {"profilePictureURL": f"https://cdn.example/{params['contactId']}.jpg"})

        if path.endswith("/api/contacts"):
            return HttpResponse(200, self.profiles.get(params["contactId"], {}))

        if "/lids/pn/" in path:
            phone = path.rsplit("/", 1)[-1]
            lid = self.lids.get(phone)
            if lid is None:
                return HttpResponse(404, None, "not found")
            return HttpResponse(200, {"lid": lid})

        if "/lids/" in path:
            lid = path.rsplit("/", 1)[-1]
            for phone, known in self.lids.items():
                if known == lid:
                    return HttpResponse(200, {"pn": f"{phone}@c.us"})
            return HttpResponse(404, None, "not found")

        return HttpResponse(404, None, "unknown route")

    def check_calls(self) -> list[str]:
        return [c["params"]["phone"] for c in self.calls if c["path"].endswith("check-exists")]


@pytest.fixture
def fake_store() -> FakeCrmStore:
    return FakeCrmStore()


@pytest.fixture
def fake_directory_transport():
    return FakeDirectoryTransport
