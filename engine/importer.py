"""Bulk contact import orchestrator.

Per job: prepare -> (validate -> classify -> persist -> report) per batch
-> completed. Batches run strictly one after another and directory calls
inside a batch are issued one record at a time. A per-record or per-batch
failure lands in the counters and the error list; only an exception that
escapes the batch loop aborts the job.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import ValidationError

from store.base import CrmStore

from .dedup import DuplicateIndex
from .directory import REASON_INVALID_NUMBER, DirectoryClient, resolve_number
from .enrichment import ContactEnricher
from .errors import ImportAborted, ImportInputError, TenantError
from .events import _maybe_await, emit_event
from .models import (
    ExistingContact,
    ImportRequest,
    ImportStatus,
    ImportSummary,
    PreparedContact,
    ProgressSnapshot,
    ValidationSession,
)
from .phone import clean_phone
from .prepare import prepare_contact
from .progress import ProgressReporter
from .tags import collect_tag_names, resolve_tag_ids

logger = logging.getLogger("crmimport.importer")

SYSTEM_TAG_INVALID_NUMBER = "invalid_number"
SYSTEM_TAG_NUMBER_NOT_EXISTS = "number_not_exists"
SYSTEM_TAG_SLUGS = [SYSTEM_TAG_INVALID_NUMBER, SYSTEM_TAG_NUMBER_NOT_EXISTS]


def parse_import_request(body: Any, max_records: Optional[int] = None) -> ImportRequest:
    """Validate a request body, raising ImportInputError when it is unusable."""
    if not isinstance(body, dict):
        raise ImportInputError("Request body must be a JSON object")
    contacts = body.get("contactsData")
    if not isinstance(contacts, list) or not contacts:
        raise ImportInputError("contactsData is required and must be a non-empty list")
    if max_records is not None and len(contacts) > max_records:
        raise ImportInputError(f"contactsData exceeds maximum of {max_records} records")
    try:
        return ImportRequest.model_validate(body)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ImportInputError(f"Invalid import request at {location}: {first.get('msg')}") from e


@dataclass(frozen=True)
class BatchPolicy:
    """Pacing of the batch loop. Tests run with ``pause_seconds=0``."""
    batch_size: int = 5
    pause_seconds: float = 0.5

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.pause_seconds < 0:
            raise ValueError("pause_seconds must be >= 0")


@dataclass
class _Counters:
    total: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0
    duplicates: int = 0
    updated: int = 0
    no_directory_presence: int = 0
    errors: list[str] = field(default_factory=list)

    def snapshot(self, import_id: Optional[str], status: ImportStatus) -> ProgressSnapshot:
        return ProgressSnapshot(
            import_id=import_id,
            total=self.total,
            processed=self.processed,
            successful=self.successful,
            failed=self.failed,
            duplicates=self.duplicates,
            updated=self.updated,
            no_directory_presence=self.no_directory_presence,
            status=status,
        )


class ImportOrchestrator:
    """Runs one import job for one company.

    ``directory``/``enricher`` are optional: without a directory client (or
    without a working session for the company) phones are not validated.
    ``event_callback`` receives pipeline events for metrics;
    ``progress_callback`` receives each ProgressSnapshot (CLI progress bars).
    """

    def __init__(
        self,
        store: CrmStore,
        directory: Optional[DirectoryClient] = None,
        enricher: Optional[ContactEnricher] = None,
        reporter: Optional[ProgressReporter] = None,
        policy: BatchPolicy = BatchPolicy(),
        event_callback=None,
        progress_callback=None,
    ):
        self.store = store
        self.directory = directory
        self.enricher = enricher
        self.reporter = reporter or ProgressReporter(store=store, event_callback=event_callback)
        self.policy = policy
        self.event_callback = event_callback
        self.progress_callback = progress_callback

    async def _report(self, company_id: str, snapshot: ProgressSnapshot) -> None:
        await self.reporter.report(company_id, snapshot)
        if self.progress_callback:
            try:
                await _maybe_await(self.progress_callback(snapshot))
            except Exception as e:
                logger.debug("Progress callback failed: %s", e)

    async def _find_session(self, company_id: str) -> Optional[ValidationSession]:
        if self.directory is None:
            logger.info("No directory client configured, phones will not be validated")
            return None
        session = await asyncio.to_thread(self.store.find_validation_session, company_id)
        if session is None:
            logger.warning("No working session for company %s, phones will not be validated", company_id)
        else:
            logger.info("Validating phones through session %s", session.session_name)
        return session

    async def _load_system_tags(self) -> dict[str, str]:
        try:
            system_tags = await asyncio.to_thread(self.store.get_system_tags, SYSTEM_TAG_SLUGS)
        except Exception as e:
            logger.warning("System tags unavailable, contacts will not be flagged: %s", e)
            return {}
        for slug in SYSTEM_TAG_SLUGS:
            if slug not in system_tags:
                logger.warning("System tag %r is not configured", slug)
        return system_tags

    async def _validate(
        self,
        contact: PreparedContact,
        session: Optional[ValidationSession],
        company_id: str,
        system_tags: dict[str, str],
        counters: _Counters,
    ) -> None:
        if not contact.phone:
            counters.no_directory_presence += 1
            return

        if clean_phone(contact.phone) is None:
            _add_system_tag(contact, system_tags, SYSTEM_TAG_INVALID_NUMBER)

        if session is None:
            return

        result = await resolve_number(
            contact.phone,
            session.session_name,
            self.directory,
            event_callback=self.event_callback,
        )
        contact.checked = True
        contact.number_exists = result.exists

        if result.exists:
            canonical = result.canonical_phone or result.phone_checked
            if canonical:
                contact.phone = canonical
            if self.enricher is not None and result.directory_id:
                try:
                    await self.enricher.enrich(contact, result.directory_id, session.session_name, company_id)
                except Exception as e:
                    logger.warning("Enrichment failed for %s, keeping basic data: %s", contact.first_name, e)
            return

        counters.no_directory_presence += 1
        if result.reason != REASON_INVALID_NUMBER:
            _add_system_tag(contact, system_tags, SYSTEM_TAG_NUMBER_NOT_EXISTS)
        logger.debug("No directory presence for %s: %s", contact.first_name, result.reason)

    async def _merge_into(
        self,
        existing: ExistingContact,
        contact: PreparedContact,
        counters: _Counters,
    ) -> None:
        merged = list(existing.tags)
        for tag_id in contact.tags:
            if tag_id not in merged:
                merged.append(tag_id)

        if len(merged) == len(existing.tags):
            counters.duplicates += 1
            return

        try:
            await asyncio.to_thread(
                self.store.update_contact,
                existing.id,
                {"tags": merged, "import_name": contact.import_name},
            )
        except Exception as e:
            logger.error("Failed to update contact %s: %s", existing.id, e)
            counters.duplicates += 1
            return
        # Later records matching the same contact see the merged set.
        existing.tags = merged
        counters.updated += 1

    async def _insert_batch(
        self,
        batch_number: int,
        contacts: list[PreparedContact],
        counters: _Counters,
    ) -> None:
        if not contacts:
            return
        records = [contact.to_record() for contact in contacts]
        try:
            created = await asyncio.to_thread(self.store.create_contacts, records)
        except Exception as e:
            message = f"Batch {batch_number}: {e}"
            logger.error("Bulk insert failed, %s", message)
            counters.failed += len(contacts)
            counters.errors.append(message)
            await emit_event(
                self.event_callback,
                {"type": "batch_error", "batch": batch_number, "count": len(contacts), "error": str(e)},
            )
            return
        counters.successful += len(created) if created is not None else len(contacts)

    async def _run_batches(
        self,
        company_id: str,
        import_id: Optional[str],
        contacts: list[PreparedContact],
        index: DuplicateIndex,
        session: Optional[ValidationSession],
        system_tags: dict[str, str],
        counters: _Counters,
    ) -> None:
        size = self.policy.batch_size
        for batch_start in range(0, len(contacts), size):
            batch = contacts[batch_start:batch_start + size]
            batch_number = batch_start // size + 1
            logger.info("Processing batch %d (%d contacts)", batch_number, len(batch))

            to_insert: list[PreparedContact] = []
            for contact in batch:
                await self._validate(contact, session, company_id, system_tags, counters)
                existing = index.find([contact.phone] + [entry.phone for entry in contact.phones])
                if existing is not None:
                    await self._merge_into(existing, contact, counters)
                else:
                    to_insert.append(contact)

            await self._insert_batch(batch_number, to_insert, counters)

            counters.processed = batch_start + len(batch)
            await self._report(company_id, counters.snapshot(import_id, ImportStatus.processing))
            if self.policy.pause_seconds:
                await asyncio.sleep(self.policy.pause_seconds)

    async def _mark_aborted(self, company_id: str, import_id: Optional[str], counters: _Counters) -> None:
        try:
            await self.reporter.report(company_id, counters.snapshot(import_id, ImportStatus.aborted))
        except Exception as e:
            logger.error("Could not mark import %s aborted: %s", import_id, e)

    async def run(self, company_id: str, request: ImportRequest) -> ImportSummary:
        if not company_id:
            raise TenantError("No company associated with the import")
        started = time.monotonic()
        import_id = request.import_id
        counters = _Counters(total=len(request.contacts_data))
        logger.info(
            "Starting import %r for company %s: %d records",
            request.import_name,
            company_id,
            counters.total,
        )

        try:
            await self._report(company_id, counters.snapshot(import_id, ImportStatus.processing))

            session = await self._find_session(company_id)
            system_tags = await self._load_system_tags()

            tag_ids = await asyncio.to_thread(
                resolve_tag_ids,
                self.store,
                company_id,
                collect_tag_names(
                    request.global_tags,
                    request.individual_assignments,
                    request.contacts_data,
                ),
            )

            contacts = [
                prepare_contact(
                    record,
                    i,
                    company_id=company_id,
                    import_name=request.import_name,
                    global_tags=request.global_tags,
                    individual_assignments=request.individual_assignments,
                    tag_ids=tag_ids,
                )
                for i, record in enumerate(request.contacts_data)
            ]

            existing = await asyncio.to_thread(self.store.list_contacts, company_id)
            index = DuplicateIndex.build(existing)

            await self._run_batches(company_id, import_id, contacts, index, session, system_tags, counters)
        except Exception as e:
            logger.exception("Import %s aborted", import_id)
            await self._mark_aborted(company_id, import_id, counters)
            raise ImportAborted(import_id, e) from e

        await self._report(company_id, counters.snapshot(import_id, ImportStatus.completed))

        summary = ImportSummary(
            successful_records=counters.successful,
            updated_records=counters.updated,
            failed_records=counters.failed,
            duplicates=counters.duplicates,
            no_directory_presence=counters.no_directory_presence,
            total_records=counters.total,
            errors=counters.errors,
            duration_ms=int((time.monotonic() - started) * 1000),
            import_id=import_id,
        )
        logger.info("Import %s finished: %s", import_id, summary.message)
        return summary


def _add_system_tag(contact: PreparedContact, system_tags: dict[str, str], slug: str) -> None:
    tag_id = system_tags.get(slug)
    if tag_id and tag_id not in contact.tags_system:
        contact.tags_system.append(tag_id)
