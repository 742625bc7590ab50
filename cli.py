"""CRM import CLI: contact imports from the command line.

Commands:
  variants     Show the phone representations used for matching
  import-file  Import contacts from a csv, json or xlsx file
  job-status   Show the durable progress record of an import
"""

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from tqdm import tqdm

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent))

from engine.directory import directory_client_from_env
from engine.enrichment import ContactEnricher, WahaProfileEnricher
from engine.errors import CrmImportError
from engine.importer import BatchPolicy, ImportOrchestrator, parse_import_request
from engine.phone import clean_phone, generate_variants
from engine.progress import ProgressReporter, push_notifier_from_env
from store.duckdb_io import DuckDbCrmStore
from store.files import load_contact_rows
from store.supabase_io import supabase_store_from_env


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )


def _open_store(duckdb_path: str):
    """Explicit DuckDB path wins; otherwise Supabase from env, else the default DuckDB file."""
    if duckdb_path:
        return DuckDbCrmStore(Path(duckdb_path))
    store = supabase_store_from_env()
    if store is not None:
        return store
    return DuckDbCrmStore()


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def main(verbose: bool):
    """CRM import: bulk contact import with directory validation."""
    _setup_logging(verbose)


@main.command()
@click.argument("phone")
@click.option("--json-output", is_flag=True, help="Output as JSON")
def variants(phone: str, json_output: bool):
    """Show the phone variants used for directory lookup and dedup."""
    found = generate_variants(phone)
    if json_output:
        click.echo(json.dumps({"phone": phone, "cleaned": clean_phone(phone), "variants": found}, indent=2))
        return
    if not found:
        click.echo(f"{phone}: invalid number (no digits)")
        return
    for i, variant in enumerate(found):
        marker = "*" if i == 0 else " "
        click.echo(f"{marker} {variant}")


@main.command("import-file")
@click.argument("filepath", type=click.Path(exists=True))
@click.option("--company-id", required=True, help="Company (tenant) to import into")
@click.option("--name", "import_name", default=None, help="Import name (defaults to the file name)")
@click.option("--tag", "tags", multiple=True, help="Tag applied to every contact (repeatable)")
@click.option("--batch-size", type=int, default=5, show_default=True)
@click.option("--pause", type=float, default=0.5, show_default=True, help="Seconds between batches")
@click.option("--session", "session_name", default=None, help="Register a WORKING messaging session for validation")
@click.option("--duckdb-path", type=click.Path(), help="Path to a local CRM .duckdb file")
@click.option("--json-output", is_flag=True, help="Output the summary as JSON")
def import_file(
    filepath: str,
    company_id: str,
    import_name: str,
    tags: tuple,
    batch_size: int,
    pause: float,
    session_name: str,
    duckdb_path: str,
    json_output: bool,
):
    """Import contacts from a csv, json or xlsx file."""
    try:
        rows = load_contact_rows(Path(filepath))
        request = parse_import_request(
            {
                "contactsData": rows,
                "importName": import_name or Path(filepath).stem,
                "globalTags": list(tags),
            }
        )
    except CrmImportError as e:
        raise click.ClickException(str(e))

    store = _open_store(duckdb_path)
    if session_name:
        if not isinstance(store, DuckDbCrmStore):
            raise click.ClickException("--session is only supported with a local DuckDB store")
        if store.find_validation_session(company_id) is None:
            store.add_session(company_id, session_name)

    directory = directory_client_from_env()
    enricher = ContactEnricher(WahaProfileEnricher(directory), directory) if directory else None

    job = store.create_import_job(company_id, request.import_name, len(request.contacts_data))
    request = request.model_copy(update={"import_id": job.id})

    if not json_output:
        click.echo(f"Importing {len(request.contacts_data)} contacts (import {job.id})...")

    pbar = tqdm(total=len(request.contacts_data), desc="Importing", unit="contact", disable=json_output)

    def on_progress(snapshot):
        pbar.update(snapshot.processed - pbar.n)

    orchestrator = ImportOrchestrator(
        store,
        directory=directory,
        enricher=enricher,
        reporter=ProgressReporter(store=store, push=push_notifier_from_env()),
        policy=BatchPolicy(batch_size=batch_size, pause_seconds=pause),
        progress_callback=on_progress,
    )
    try:
        summary = asyncio.run(orchestrator.run(company_id, request))
    except CrmImportError as e:
        raise click.ClickException(str(e))
    finally:
        pbar.close()

    if json_output:
        click.echo(json.dumps({**summary.to_response(), "importId": summary.import_id}, indent=2))
        return

    click.echo(f"\n{summary.message}")
    click.echo(f"  inserted: {summary.successful_records}")
    click.echo(f"  updated: {summary.updated_records}")
    click.echo(f"  duplicates without changes: {summary.duplicates}")
    click.echo(f"  without WhatsApp: {summary.no_directory_presence}")
    click.echo(f"  failed: {summary.failed_records}")
    for error in summary.errors:
        click.echo(f"  ! {error}")
    click.echo(f"  duration: {summary.duration_ms} ms")


@main.command("job-status")
@click.argument("import_id")
@click.option("--duckdb-path", type=click.Path(), help="Path to a local CRM .duckdb file")
@click.option("--json-output", is_flag=True, help="Output as JSON")
def job_status(import_id: str, duckdb_path: str, json_output: bool):
    """Show the durable progress record of an import."""
    job = _open_store(duckdb_path).get_import_job(import_id)
    if job is None:
        raise click.ClickException(f"Import {import_id} not found")

    if json_output:
        click.echo(json.dumps(job.model_dump(mode="json"), indent=2))
        return

    pct = (job.processed_records / job.total_records * 100) if job.total_records else 0
    click.echo(f"Import {job.id} ({job.name}): {job.status.value}")
    click.echo(f"  processed: {job.processed_records}/{job.total_records} ({pct:.1f}%)")
    click.echo(f"  successful: {job.successful_records}")
    click.echo(f"  failed: {job.failed_records}")
    if job.completed_date:
        click.echo(f"  completed: {job.completed_date.isoformat()}")


if __name__ == "__main__":
    main()
