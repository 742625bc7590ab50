from __future__ import annotations

import pytest

from engine.models import ImportStatus


class _FakeResponse:
    def __init__(self, status_code: int, payload, headers: dict | None = None, text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.text = text

    def json(self):
        return self._payload


def _recorder(responder):
    calls: list[dict] = []

    def fake_request(method, url, headers=None, params=None, json=None, timeout=None):
        call = {
            "method": method,
            "url": url,
            "headers": dict(headers or {}),
            "params": dict(params or {}),
            "json": json,
            "timeout": timeout,
        }
        calls.append(call)
        return responder(call)

    return calls, fake_request


def test_supabase_list_contacts_excludes_deleted_and_pages() -> None:
    from store.supabase_io import SupabaseCrmStore, SupabaseRestClient

    pages = [
        [{"id": f"c{i}", "phone": "5511987654321", "phones": None, "tags": None} for i in range(2)],
        [{"id": "c2", "phone": 5521912345678, "phones": [{"phone": "5521912345678"}], "tags": ["t1"]}],
    ]
    calls, fake_request = _recorder(lambda call: _FakeResponse(200, pages[len(calls) - 1]))

    client = SupabaseRestClient("https://example.supabase.co", "test-key", request_fn=fake_request)
    store = SupabaseCrmStore(client, page_size=2)

    contacts = store.list_contacts("co-1")

    assert [c.id for c in contacts] == ["c0", "c1", "c2"]
    assert contacts[0].phones == [] and contacts[0].tags == []
    assert contacts[2].phone == "5521912345678"
    assert calls[0]["url"].endswith("/rest/v1/contacts")
    assert calls[0]["params"]["company_id"] == "eq.co-1"
    assert calls[0]["params"]["deleted"] == "not.is.true"
    assert calls[0]["params"]["offset"] == "0"
    assert calls[1]["params"]["offset"] == "2"


def test_supabase_create_tags_requests_representation() -> None:
    from store.supabase_io import SupabaseCrmStore, SupabaseRestClient

    calls, fake_request = _recorder(
        lambda call: _FakeResponse(201, [{"id": 10 + i, **row} for i, row in enumerate(call["json"])])
    )
    store = SupabaseCrmStore(SupabaseRestClient("https://example.supabase.co", "test-key", request_fn=fake_request))

    tags = store.create_tags("co-1", ["VIP", "Lead"])

    assert [(t.id, t.name) for t in tags] == [("10", "VIP"), ("11", "Lead")]
    assert calls[0]["method"] == "POST"
    assert calls[0]["headers"]["Prefer"] == "return=representation"
    assert calls[0]["json"][0] == {"name": "VIP", "company_id": "co-1", "type": "manual", "is_smart": False}
    assert calls[0]["headers"]["Authorization"] == "Bearer test-key"


def test_supabase_update_contact_patches_by_id() -> None:
    from store.supabase_io import SupabaseCrmStore, SupabaseRestClient

    calls, fake_request = _recorder(lambda call: _FakeResponse(204, None))
    store = SupabaseCrmStore(SupabaseRestClient("https://example.supabase.co", "test-key", request_fn=fake_request))

    store.update_contact("c-9", {"tags": ["t1", "t2"], "import_name": "Fair"})

    assert calls[0]["method"] == "PATCH"
    assert calls[0]["params"] == {"id": "eq.c-9"}
    assert calls[0]["json"] == {"tags": ["t1", "t2"], "import_name": "Fair"}


def test_supabase_system_tags_use_in_filter() -> None:
    from store.supabase_io import SupabaseCrmStore, SupabaseRestClient

    calls, fake_request = _recorder(
        lambda call: _FakeResponse(200, [{"id": 1, "slug": "invalid_number"}, {"id": 2, "slug": "number_not_exists"}])
    )
    store = SupabaseCrmStore(SupabaseRestClient("https://example.supabase.co", "test-key", request_fn=fake_request))

    result = store.get_system_tags(["invalid_number", "number_not_exists"])

    assert result == {"invalid_number": "1", "number_not_exists": "2"}
    assert calls[0]["params"]["slug"] == "in.(invalid_number,number_not_exists)"


def test_supabase_session_lookup_prefers_default_then_any_working() -> None:
    from store.supabase_io import SupabaseCrmStore, SupabaseRestClient

    def respond(call):
        if call["params"].get("is_default") == "is.true":
            return _FakeResponse(200, [])
        return _FakeResponse(200, [{"id": "s2", "company_id": "co-1", "session_name": "backup", "status": "WORKING"}])

    calls, fake_request = _recorder(respond)
    store = SupabaseCrmStore(SupabaseRestClient("https://example.supabase.co", "test-key", request_fn=fake_request))

    session = store.find_validation_session("co-1")

    assert session.session_name == "backup"
    assert len(calls) == 2
    assert calls[0]["params"]["status"] == "eq.WORKING"
    assert calls[0]["params"]["is_deleted"] == "not.is.true"
    assert "is_default" not in calls[1]["params"]


def test_supabase_import_job_lifecycle() -> None:
    from store.supabase_io import SupabaseCrmStore, SupabaseRestClient

    def respond(call):
        if call["method"] == "POST":
            return _FakeResponse(201, [{"id": "imp-1", **call["json"][0]}])
        if call["method"] == "PATCH":
            return _FakeResponse(204, None)
        return _FakeResponse(
            200,
            [{"id": "imp-1", "company_id": "co-1", "status": "completed", "completed_date": "2026-02-09T00:00:00Z"}],
        )

    calls, fake_request = _recorder(respond)
    store = SupabaseCrmStore(SupabaseRestClient("https://example.supabase.co", "test-key", request_fn=fake_request))

    job = store.create_import_job("co-1", "Fair", 12)
    store.update_import_job(job.id, {"processed_records": 5})
    fetched = store.get_import_job("imp-1")

    assert job.status == ImportStatus.processing
    assert job.total_records == 12
    assert calls[1]["params"] == {"id": "eq.imp-1"}
    assert fetched.status == ImportStatus.completed
    assert fetched.completed_date.tzinfo is not None


def test_supabase_errors_do_not_leak_the_key() -> None:
    from engine.errors import StoreError
    from store.supabase_io import SupabaseCrmStore, SupabaseRestClient, SupabaseRestError

    _, fake_request = _recorder(lambda call: _FakeResponse(500, None, text="boom"))
    store = SupabaseCrmStore(SupabaseRestClient("https://example.supabase.co", "secret-key", request_fn=fake_request))

    with pytest.raises(SupabaseRestError) as excinfo:
        store.list_tags("co-1")

    assert isinstance(excinfo.value, StoreError)
    assert excinfo.value.status_code == 500
    assert "secret-key" not in str(excinfo.value)


def test_supabase_client_from_env_requires_url_and_key(monkeypatch) -> None:
    from store.supabase_io import supabase_client_from_env, supabase_store_from_env

    monkeypatch.delenv("CRM_SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("CRM_SUPABASE_SERVICE_ROLE_KEY", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)

    assert supabase_client_from_env() is None
    assert supabase_store_from_env() is None

    monkeypatch.setenv("CRM_SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("CRM_SUPABASE_SERVICE_ROLE_KEY", "test-key")

    assert supabase_client_from_env() is not None
    assert supabase_store_from_env() is not None
