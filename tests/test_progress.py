import asyncio

from engine.models import ImportStatus, ProgressSnapshot
from engine.progress import ProgressReporter, PushNotifier, PushResult
from engine.transport import HttpResponse


class _RecordingTransport:
    def __init__(self, status: int = 200, exc: Exception | None = None):
        self.status = status
        self.exc = exc
        self.calls: list[dict] = []

    async def __call__(self, method, url, *, headers=None, params=None, json_body=None, timeout_seconds=None):
        self.calls.append({"method": method, "url": url, "headers": dict(headers or {}), "json": json_body})
        if self.exc is not None:
            raise self.exc
        return HttpResponse(self.status, None, "upstream said no" if self.status >= 400 else "")


def _snapshot(**kwargs) -> ProgressSnapshot:
    base = {"import_id": "import-1", "total": 10, "processed": 5, "successful": 3, "failed": 1}
    base.update(kwargs)
    return ProgressSnapshot(**base)


def test_push_posts_snapshot_with_bearer_token() -> None:
    transport = _RecordingTransport()
    notifier = PushNotifier("https://push.example/", "push-token", request_fn=transport)

    result = asyncio.run(notifier.send("co-1", _snapshot(no_directory_presence=2).to_payload()))

    assert result == PushResult(ok=True, status_code=200)
    call = transport.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "https://push.example/realtime/co-1"
    assert call["headers"]["Authorization"] == "Bearer push-token"
    assert call["json"]["type"] == "import_progress"
    assert call["json"]["company_id"] == "co-1"
    assert call["json"]["data"]["noWhatsApp"] == 2
    assert call["json"]["data"]["status"] == "processing"
    assert "timestamp" in call["json"]


def test_push_failures_are_results_not_exceptions() -> None:
    http_error = asyncio.run(
        PushNotifier("https://push.example", "t", request_fn=_RecordingTransport(status=502)).send("co-1", {})
    )
    network_error = asyncio.run(
        PushNotifier("https://push.example", "t", request_fn=_RecordingTransport(exc=OSError("refused"))).send(
            "co-1", {}
        )
    )

    assert http_error.ok is False
    assert http_error.status_code == 502
    assert network_error.ok is False
    assert "refused" in network_error.error


def test_report_writes_durable_counters_then_pushes(fake_store) -> None:
    job = fake_store.create_import_job("co-1", "x", 10)
    transport = _RecordingTransport()
    events = []
    reporter = ProgressReporter(
        store=fake_store,
        push=PushNotifier("https://push.example", "t", request_fn=transport),
        event_callback=events.append,
    )

    outcome = asyncio.run(reporter.report("co-1", _snapshot(import_id=job.id)))

    assert outcome.durable_ok is True
    assert outcome.push.ok is True
    assert fake_store.job_updates == [
        (
            job.id,
            {
                "processed_records": 5,
                "successful_records": 3,
                "failed_records": 1,
                "status": "processing",
            },
        )
    ]
    assert [e["type"] for e in events] == ["durable_update", "push_result"]


def test_final_report_sets_completed_date(fake_store) -> None:
    job = fake_store.create_import_job("co-1", "x", 10)
    reporter = ProgressReporter(store=fake_store)

    asyncio.run(reporter.report("co-1", _snapshot(import_id=job.id, processed=10, status=ImportStatus.completed)))

    fields = fake_store.job_updates[-1][1]
    assert fields["status"] == "completed"
    assert fields["total_records"] == 10
    assert fields["completed_date"]
    assert fake_store.jobs[job.id].completed_date is not None


def test_sinks_fail_independently(fake_store) -> None:
    job = fake_store.create_import_job("co-1", "x", 10)
    fake_store.fail_job_updates = True
    transport = _RecordingTransport()
    reporter = ProgressReporter(
        store=fake_store,
        push=PushNotifier("https://push.example", "t", request_fn=transport),
    )

    outcome = asyncio.run(reporter.report("co-1", _snapshot(import_id=job.id)))

    assert outcome.durable_ok is False
    assert outcome.push.ok is True
    assert len(transport.calls) == 1


def test_report_without_push_endpoint_is_skipped(fake_store) -> None:
    outcome = asyncio.run(ProgressReporter(store=None).report("co-1", _snapshot()))

    assert outcome.durable_ok is None
    assert outcome.push.skipped is True
