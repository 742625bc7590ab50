"""Contact file ingest for local imports (csv / json / xlsx).

Rows come back as raw contact dicts keyed by CRM field names, ready to be
validated as RawContactRecord. Unrecognized columns are passed through.
"""

import csv
import json
import logging
from pathlib import Path
from typing import Any, Optional

from engine.errors import ImportInputError

logger = logging.getLogger("crmimport.files")

# ── Column mapping (spreadsheet header -> CRM field) ────────────────────────

COLUMN_ALIASES: dict[str, list[str]] = {
    "first_name": ["First Name", "first_name", "FirstName", "Name", "Nome", "Primeiro Nome"],
    "last_name": ["Last Name", "last_name", "LastName", "Sobrenome"],
    "email": ["Email", "E-mail", "email", "Email Address"],
    "phone": ["Phone", "phone", "Phone Number", "Telefone", "Celular", "WhatsApp"],
    "document_number": ["Document", "document_number", "CPF", "CNPJ", "CPF/CNPJ", "Documento"],
    "gender": ["Gender", "gender", "Sexo", "Genero", "Gênero"],
    "birth_date": ["Birth Date", "birth_date", "Birthday", "Data de Nascimento", "Nascimento"],
    "company_name": ["Company", "company_name", "Company Name", "Empresa"],
    "position": ["Position", "position", "Title", "Job Title", "Cargo"],
    "responsible_name": ["Owner", "responsible_name", "Responsible", "Responsavel", "Responsável"],
    "status": ["Status", "status"],
    "source": ["Source", "source", "Origem"],
    "value": ["Value", "value", "Deal Value", "Valor"],
    "tags": ["Tags", "tags", "Etiquetas"],
}


def _find_column(headers: list[str], candidates: list[str]) -> Optional[str]:
    """Find the header (as written in the file) matching the first candidate."""
    stripped_map = {h.strip(): h for h in headers}
    for c in candidates:
        if c in stripped_map:
            return stripped_map[c]
    # Case-insensitive fallback
    lower_map = {h.lower().strip(): h for h in headers}
    for c in candidates:
        if c.lower() in lower_map:
            return lower_map[c.lower()]
    return None


def map_columns(headers: list[str]) -> dict[str, str]:
    """Header -> CRM field for every header that matches an alias."""
    mapping: dict[str, str] = {}
    for field_name, candidates in COLUMN_ALIASES.items():
        column = _find_column(headers, candidates)
        if column is not None and column not in mapping:
            mapping[column] = field_name
    return mapping


def _read_csv(path: Path) -> list[dict[str, Any]]:
    with path.open("r", encoding="utf-8-sig", newline="") as f:
        return [{k: (v or "").strip() for k, v in row.items() if k} for row in csv.DictReader(f)]


def _read_xlsx(path: Path) -> list[dict[str, Any]]:
    import openpyxl

    wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        rows = list(wb.active.iter_rows(min_row=1, values_only=True))
    finally:
        wb.close()
    if not rows:
        return []
    headers = [str(h).strip() if h else f"col_{i}" for i, h in enumerate(rows[0])]
    records = []
    for row in rows[1:]:
        if all(v is None for v in row):
            continue
        # Keep native numbers; the record model turns them into text.
        records.append({h: (row[i] if i < len(row) else None) for i, h in enumerate(headers)})
    return records


def _read_json(path: Path) -> list[dict[str, Any]]:
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("contactsData") or data.get("contacts") or []
    if not isinstance(data, list):
        raise ImportInputError(f"{path.name}: expected a list of contacts")
    return [row for row in data if isinstance(row, dict)]


def load_contact_rows(path: Path) -> list[dict[str, Any]]:
    """Load contact rows from a csv, json or xlsx file, renaming known columns."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".csv":
        rows = _read_csv(path)
    elif suffix == ".json":
        rows = _read_json(path)
    elif suffix in (".xlsx", ".xlsm"):
        rows = _read_xlsx(path)
    else:
        raise ImportInputError(f"Unsupported contact file type: {path.suffix or path.name}")

    if not rows:
        return []

    mapping = map_columns(list(rows[0].keys()))
    logger.info("Loaded %d rows from %s (%d mapped columns)", len(rows), path.name, len(mapping))
    return [{mapping.get(k, k): v for k, v in row.items()} for row in rows]
