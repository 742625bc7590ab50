"""CRM contact import HTTP API.

Endpoints:
  POST /import/contacts           Bulk contact import (tenant from X-Company-Id)
  GET  /imports/{import_id}       Durable progress record of an import job
  GET  /health                    Health check
  GET  /metrics                   Operational metrics snapshot
"""

import asyncio
import logging
import os
import sys
import threading
import time
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

# Ensure project root on path
sys.path.insert(0, str(Path(__file__).parent))

from engine.directory import DirectoryClient, directory_client_from_env
from engine.enrichment import ContactEnricher, WahaProfileEnricher
from engine.errors import ImportAborted, ImportInputError, TenantError
from engine.importer import BatchPolicy, ImportOrchestrator, parse_import_request
from engine.progress import ProgressReporter, push_notifier_from_env

logger = logging.getLogger("crmimport.server")

# Configuration from environment
API_KEY = os.environ.get("CRM_API_KEY", "")
SUPABASE_URL = os.environ.get("CRM_SUPABASE_URL", os.environ.get("SUPABASE_URL", ""))
SUPABASE_SERVICE_ROLE_KEY = os.environ.get(
    "CRM_SUPABASE_SERVICE_ROLE_KEY",
    os.environ.get("SUPABASE_SERVICE_ROLE_KEY", ""),
)
SUPABASE_TIMEOUT_SECONDS = float(os.environ.get("CRM_SUPABASE_TIMEOUT_SECONDS", "10.0"))
STORE_BACKEND = os.environ.get("CRM_STORE_BACKEND", "duckdb").lower()
DUCKDB_PATH = os.environ.get("CRM_DUCKDB_PATH", str(Path(__file__).parent / "crm.duckdb"))
BATCH_SIZE = int(os.environ.get("CRM_IMPORT_BATCH_SIZE", "5"))
BATCH_PAUSE_SECONDS = float(os.environ.get("CRM_IMPORT_BATCH_PAUSE_SECONDS", "0.5"))
MAX_IMPORT_RECORDS = int(os.environ.get("CRM_MAX_IMPORT_RECORDS", "10000"))

# If Supabase is configured and the store backend wasn't explicitly set, prefer Supabase.
if (
    "CRM_STORE_BACKEND" not in os.environ
    and SUPABASE_URL
    and SUPABASE_SERVICE_ROLE_KEY
):
    STORE_BACKEND = "supabase"

app = FastAPI(
    title="CRM Import",
    description="Bulk contact import with directory validation",
    version="0.1.0",
)


class MetricsRegistry:
    """In-memory operational metrics snapshot for the API process."""

    def __init__(self, max_samples: int = 2000):
        self._lock = threading.Lock()
        self._max_samples = max_samples
        self.request_count = 0
        self.status_counts: dict[int, int] = {}
        self.endpoint_counts: dict[str, int] = {}
        self.endpoint_latencies_ms: dict[str, list[float]] = {}
        self.directory_checks = 0
        self.directory_matches = 0
        self.directory_failure_reasons: dict[str, int] = {}
        self.push_ok = 0
        self.push_failed = 0
        self.push_skipped = 0
        self.durable_ok = 0
        self.durable_failed = 0
        self.batch_errors = 0
        self.imports_by_status: dict[str, int] = {}
        self.import_latencies_ms: list[float] = []

    def _push_latency(self, sample: list[float], value: float) -> None:
        sample.append(value)
        if len(sample) > self._max_samples:
            sample.pop(0)

    def record_http(self, endpoint: str, status_code: int, latency_ms: float) -> None:
        with self._lock:
            self.request_count += 1
            self.status_counts[status_code] = self.status_counts.get(status_code, 0) + 1
            self.endpoint_counts[endpoint] = self.endpoint_counts.get(endpoint, 0) + 1
            self._push_latency(self.endpoint_latencies_ms.setdefault(endpoint, []), latency_ms)

    def record_directory_check(self, verified: bool, exists: Optional[bool], reason: str) -> None:
        with self._lock:
            self.directory_checks += 1
            if exists:
                self.directory_matches += 1
            if not verified and reason:
                # "API error: 503 (server_error)" -> "server_error"
                key = reason.rsplit("(", 1)[-1].rstrip(")") if reason.endswith(")") else "transport_error"
                self.directory_failure_reasons[key] = self.directory_failure_reasons.get(key, 0) + 1

    def record_push(self, ok: bool, skipped: bool) -> None:
        with self._lock:
            if skipped:
                self.push_skipped += 1
            elif ok:
                self.push_ok += 1
            else:
                self.push_failed += 1

    def record_durable_update(self, ok: Optional[bool]) -> None:
        if ok is None:
            return
        with self._lock:
            if ok:
                self.durable_ok += 1
            else:
                self.durable_failed += 1

    def record_batch_error(self) -> None:
        with self._lock:
            self.batch_errors += 1

    def record_import(self, status: str, latency_ms: float) -> None:
        with self._lock:
            self.imports_by_status[status] = self.imports_by_status.get(status, 0) + 1
            self._push_latency(self.import_latencies_ms, latency_ms)

    @staticmethod
    def _percentile(values: list[float], percentile: float) -> float:
        if not values:
            return 0.0
        ordered = sorted(values)
        index = int((len(ordered) - 1) * percentile)
        return round(ordered[index], 2)

    def snapshot(self) -> dict:
        with self._lock:
            endpoint_latency = {
                endpoint: {
                    "count": self.endpoint_counts.get(endpoint, 0),
                    "p50": self._percentile(latencies, 0.50),
                    "p95": self._percentile(latencies, 0.95),
                }
                for endpoint, latencies in self.endpoint_latencies_ms.items()
            }

            return {
                "requests_total": self.request_count,
                "status_codes": {str(k): v for k, v in self.status_counts.items()},
                "endpoint_latency_ms": endpoint_latency,
                "directory": {
                    "checks": self.directory_checks,
                    "matches": self.directory_matches,
                    "failure_reasons": dict(self.directory_failure_reasons),
                },
                "push": {
                    "ok": self.push_ok,
                    "failed": self.push_failed,
                    "skipped": self.push_skipped,
                },
                "durable_updates": {
                    "ok": self.durable_ok,
                    "failed": self.durable_failed,
                },
                "batch_errors": self.batch_errors,
                "imports": {
                    "by_status": dict(self.imports_by_status),
                    "p50_ms": self._percentile(self.import_latencies_ms, 0.50),
                    "p95_ms": self._percentile(self.import_latencies_ms, 0.95),
                },
            }


_METRICS = MetricsRegistry()


async def _pipeline_event_callback(event: dict) -> None:
    event_type = event.get("type")
    if event_type == "directory_check":
        _METRICS.record_directory_check(
            bool(event.get("verified")),
            event.get("exists"),
            str(event.get("reason") or ""),
        )
    elif event_type == "push_result":
        _METRICS.record_push(bool(event.get("ok")), bool(event.get("skipped")))
    elif event_type == "durable_update":
        _METRICS.record_durable_update(event.get("ok"))
    elif event_type == "batch_error":
        _METRICS.record_batch_error()


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        latency_ms = (time.perf_counter() - started) * 1000
        _METRICS.record_http(request.url.path, 500, latency_ms)
        raise

    latency_ms = (time.perf_counter() - started) * 1000
    _METRICS.record_http(request.url.path, response.status_code, latency_ms)
    return response


# --- Collaborators (lazy) ---

_store = None
_store_lock = threading.Lock()


def _get_store():
    """Create (lazily) the CRM store for the configured backend."""
    global _store
    if _store is not None:
        return _store
    with _store_lock:
        if _store is not None:
            return _store
        if STORE_BACKEND == "supabase" and SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY:
            from store.supabase_io import SupabaseCrmStore, SupabaseRestClient

            _store = SupabaseCrmStore(
                SupabaseRestClient(
                    SUPABASE_URL,
                    SUPABASE_SERVICE_ROLE_KEY,
                    timeout_seconds=SUPABASE_TIMEOUT_SECONDS,
                )
            )
        else:
            from store.duckdb_io import DuckDbCrmStore

            _store = DuckDbCrmStore(DUCKDB_PATH)
        logger.info("CRM store backend: %s", type(_store).__name__)
        return _store


def _get_directory() -> Optional[DirectoryClient]:
    return directory_client_from_env()


def _build_orchestrator(store) -> ImportOrchestrator:
    directory = _get_directory()
    enricher = None
    if directory is not None:
        enricher = ContactEnricher(WahaProfileEnricher(directory), directory)
    reporter = ProgressReporter(
        store=store,
        push=push_notifier_from_env(),
        event_callback=_pipeline_event_callback,
    )
    return ImportOrchestrator(
        store,
        directory=directory,
        enricher=enricher,
        reporter=reporter,
        policy=BatchPolicy(batch_size=BATCH_SIZE, pause_seconds=BATCH_PAUSE_SECONDS),
        event_callback=_pipeline_event_callback,
    )


# --- Auth (accept X-API-Key, x-api-key or Authorization: Bearer) ---

async def verify_api_key_compat(request: Request):
    """Verify API key from X-API-Key, x-api-key, or Authorization: Bearer header."""
    if not API_KEY:
        return
    key = (
        request.headers.get("X-API-Key", "")
        or request.headers.get("x-api-key", "")
    )
    if not key:
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            key = auth[7:]
    if key != API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


async def require_company(request: Request) -> str:
    """Tenant of the caller, taken from the X-Company-Id header."""
    company_id = request.headers.get("X-Company-Id", "").strip()
    if not company_id:
        raise HTTPException(status_code=401, detail="No company associated with caller")
    return company_id


# --- Endpoints ---

@app.post("/import/contacts", dependencies=[Depends(verify_api_key_compat)])
async def import_contacts(request: Request, company_id: str = Depends(require_company)):
    """Import a list of contacts for the caller's company.

    Runs to completion within the request. Progress is written to the import
    job record (poll ``GET /imports/{id}``) and pushed to the realtime endpoint.
    """
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be valid JSON")

    try:
        import_request = parse_import_request(body, max_records=MAX_IMPORT_RECORDS)
    except ImportInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    started = time.perf_counter()
    try:
        store = _get_store()
        if not import_request.import_id:
            job = await asyncio.to_thread(
                store.create_import_job,
                company_id,
                import_request.import_name,
                len(import_request.contacts_data),
            )
            import_request = import_request.model_copy(update={"import_id": job.id})
        else:
            job = await asyncio.to_thread(store.get_import_job, import_request.import_id)
            if job is None or job.company_id != company_id:
                raise HTTPException(status_code=404, detail="Import not found")

        summary = await _build_orchestrator(store).run(company_id, import_request)
    except HTTPException:
        raise
    except TenantError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except ImportAborted as e:
        _METRICS.record_import("aborted", (time.perf_counter() - started) * 1000)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Import failed", "details": str(e.cause)},
        )
    except Exception as e:
        logger.exception("Import request failed before the job started")
        _METRICS.record_import("aborted", (time.perf_counter() - started) * 1000)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Import failed", "details": str(e)},
        )

    _METRICS.record_import("completed", (time.perf_counter() - started) * 1000)
    response = summary.to_response()
    response["importId"] = summary.import_id
    return response


@app.get("/imports/{import_id}", dependencies=[Depends(verify_api_key_compat)])
async def get_import(import_id: str, company_id: str = Depends(require_company)):
    """Durable progress record of an import job (polling fallback for push)."""
    job = await asyncio.to_thread(_get_store().get_import_job, import_id)
    if job is None or (job.company_id and job.company_id != company_id):
        raise HTTPException(status_code=404, detail="Import not found")
    return job.model_dump(mode="json")


@app.get("/metrics", dependencies=[Depends(verify_api_key_compat)])
async def metrics_endpoint():
    """Operational metrics snapshot for requests, directory checks, and progress sinks."""
    return _METRICS.snapshot()


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "crmimport",
        "version": "0.1.0",
    }
