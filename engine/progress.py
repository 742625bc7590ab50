"""Dual-channel progress reporting for import jobs.

- Durable sink: counters on the ImportJob record (source of truth, polled).
- Push sink: best-effort POST to the realtime endpoint of the tenant.

The sinks are independent; neither failure reaches the job's counters or
control flow.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from store.base import CrmStore

from .events import emit_event
from .models import ImportStatus, ProgressSnapshot
from .transport import aiohttp_request

logger = logging.getLogger("crmimport.progress")


@dataclass(frozen=True)
class PushResult:
    """Outcome of a push notification. Not an exception, never raised."""
    ok: bool
    status_code: int = 0
    error: Optional[str] = None
    skipped: bool = False


@dataclass(frozen=True)
class ReportOutcome:
    durable_ok: Optional[bool]
    push: PushResult


class PushNotifier:
    """Posts ``import_progress`` events to ``{base_url}/realtime/{company_id}``."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout_seconds: Optional[float] = None,
        request_fn=None,
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout_seconds = timeout_seconds
        self._request_fn = request_fn or aiohttp_request

    async def send(self, company_id: str, data: dict) -> PushResult:
        payload = {
            "type": "import_progress",
            "company_id": company_id,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            resp = await self._request_fn(
                "POST",
                f"{self._base_url}/realtime/{company_id}",
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self._token}",
                },
                json_body=payload,
                timeout_seconds=self._timeout_seconds,
            )
        except Exception as e:
            logger.error("Push network failure for company %s: %s", company_id, e)
            return PushResult(ok=False, error=str(e) or repr(e))

        if not resp.ok:
            # Never include the bearer token in logs.
            logger.error("Push HTTP %s: %s", resp.status_code, (resp.text or "")[:500])
            return PushResult(ok=False, status_code=resp.status_code, error=f"HTTP {resp.status_code}")
        return PushResult(ok=True, status_code=resp.status_code)


def push_notifier_from_env() -> Optional[PushNotifier]:
    url = os.environ.get("WEBSOCKET_ENDPOINT_URL", "")
    token = os.environ.get("WEBSOCKET_AUTH_TOKEN", "")
    if not url or not token:
        return None
    return PushNotifier(url, token)


def durable_fields(snapshot: ProgressSnapshot) -> dict:
    fields = {
        "processed_records": snapshot.processed,
        "successful_records": snapshot.successful,
        "failed_records": snapshot.failed,
        "status": snapshot.status.value,
    }
    if snapshot.status in (ImportStatus.completed, ImportStatus.aborted):
        fields["total_records"] = snapshot.total
        fields["completed_date"] = datetime.now(timezone.utc).isoformat()
    return fields


class ProgressReporter:
    """Emits each snapshot to the durable store and the push endpoint."""

    def __init__(
        self,
        store: Optional[CrmStore] = None,
        push: Optional[PushNotifier] = None,
        event_callback=None,
    ):
        self._store = store
        self._push = push
        self._event_callback = event_callback

    async def _write_durable(self, snapshot: ProgressSnapshot) -> Optional[bool]:
        if self._store is None or not snapshot.import_id:
            return None
        try:
            await asyncio.to_thread(
                self._store.update_import_job,
                snapshot.import_id,
                durable_fields(snapshot),
            )
            return True
        except Exception as e:
            logger.error("Failed to update import job %s: %s", snapshot.import_id, e)
            return False

    async def _send_push(self, company_id: str, snapshot: ProgressSnapshot) -> PushResult:
        if self._push is None:
            logger.debug("Push endpoint not configured, skipping progress event")
            return PushResult(ok=False, skipped=True, error="push endpoint not configured")
        return await self._push.send(company_id, snapshot.to_payload())

    async def report(self, company_id: str, snapshot: ProgressSnapshot) -> ReportOutcome:
        durable_ok = await self._write_durable(snapshot)
        push = await self._send_push(company_id, snapshot)
        await emit_event(
            self._event_callback,
            {"type": "durable_update", "ok": durable_ok, "status": snapshot.status.value},
        )
        await emit_event(
            self._event_callback,
            {"type": "push_result", "ok": push.ok, "skipped": push.skipped, "status_code": push.status_code},
        )
        return ReportOutcome(durable_ok=durable_ok, push=push)
